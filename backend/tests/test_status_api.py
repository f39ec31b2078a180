from fastapi.testclient import TestClient

from meetbot.api import create_app
from meetbot.archive.store import AnalysisArchive, AnalysisRecord
from meetbot.classification.classifier import ConversationType
from meetbot.system_metrics import increment_metric


def _archive(tmp_path):
    archive = AnalysisArchive(tmp_path / "analysis")
    for month, label in ((1, "old"), (2, "new")):
        archive.save(
            AnalysisRecord(
                transcript="q",
                analysis=label,
                conversation_type=ConversationType.CASUAL,
                timestamp=f"2024-0{month}-01T00:00:00+00:00",
            )
        )
    return archive


def test_health_includes_agent_status(tmp_path):
    client = TestClient(create_app(_archive(tmp_path), status=lambda: {"state": "listening"}))

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "meetbot", "state": "listening"}


def test_analyses_newest_first_with_limit(tmp_path):
    client = TestClient(create_app(_archive(tmp_path)))

    body = client.get("/api/analyses", params={"limit": 1}).json()

    assert body["count"] == 1
    assert body["analyses"][0]["analysis"] == "new"
    assert body["analyses"][0]["conversationType"] == "casual"


def test_analyses_rejects_bad_limit(tmp_path):
    client = TestClient(create_app(_archive(tmp_path)))

    assert client.get("/api/analyses", params={"limit": 0}).status_code == 422


def test_corrupt_archive_is_server_error(tmp_path):
    archive = _archive(tmp_path)
    (tmp_path / "analysis" / "analysis_zzz.json").write_text("[]", encoding="utf-8")
    client = TestClient(create_app(archive))

    response = client.get("/api/analyses")

    assert response.status_code == 500
    assert "analysis_zzz.json" in response.json()["detail"]


def test_metrics_snapshot(tmp_path):
    increment_metric("orchestrations_completed", 2)
    client = TestClient(create_app(_archive(tmp_path)))

    body = client.get("/api/metrics").json()

    assert body["orchestrations_completed"] == 2
    assert body["archive_records"] == 2
    assert "avg_orchestration_latency_ms" in body
