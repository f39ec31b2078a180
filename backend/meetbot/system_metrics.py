import threading
import time
from typing import Any


_lock = threading.Lock()
_COUNTERS = (
    "orchestrations_started",
    "orchestrations_completed",
    "orchestrations_aborted_feedback",
    "orchestrations_failed",
    "generation_failures",
    "retrievals_performed",
    "conversations_technical",
    "conversations_casual",
    "speech_started",
    "speech_failures",
    "archive_records_saved",
    "watcher_cycles",
    "watcher_cycles_skipped",
    "watcher_truncations",
    "entries_parsed",
    "entries_skipped",
    "transcripts_ingested",
)
_metrics: dict[str, float] = {name: 0.0 for name in _COUNTERS}
_metrics.update({
    "orchestration_latency_total_ms": 0.0,
    "orchestration_latency_samples": 0.0,
    "orchestrations_in_flight": 0.0,
})


def increment_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        _metrics[key] = float(_metrics.get(key, 0.0)) + float(amount)


def decrement_metric(name: str, amount: float = 1.0) -> None:
    key = str(name or "").strip()
    if not key:
        return
    with _lock:
        next_value = float(_metrics.get(key, 0.0)) - float(amount)
        _metrics[key] = max(0.0, next_value)


def observe_orchestration_latency_ms(value_ms: float) -> None:
    latency = max(0.0, float(value_ms or 0.0))
    with _lock:
        _metrics["orchestration_latency_total_ms"] = float(_metrics.get("orchestration_latency_total_ms", 0.0)) + latency
        _metrics["orchestration_latency_samples"] = float(_metrics.get("orchestration_latency_samples", 0.0)) + 1.0


def reset_metrics() -> None:
    with _lock:
        for key in list(_metrics):
            _metrics[key] = 0.0


def get_metrics_snapshot(extra: dict[str, Any] | None = None) -> dict[str, Any]:
    with _lock:
        data = dict(_metrics)

    latency_samples = max(1.0, float(data.get("orchestration_latency_samples") or 0.0))

    payload: dict[str, Any] = {
        "generated_at": time.time(),
        "orchestrations_in_flight": int(data.get("orchestrations_in_flight") or 0.0),
        "orchestration_latency_samples": int(data.get("orchestration_latency_samples") or 0.0),
        "avg_orchestration_latency_ms": round(float(data.get("orchestration_latency_total_ms") or 0.0) / latency_samples, 2),
    }
    payload.update({name: int(data.get(name) or 0.0) for name in _COUNTERS})

    if extra:
        payload.update(extra)
    return payload
