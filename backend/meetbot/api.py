from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from fastapi import FastAPI, HTTPException, Query

from meetbot import __version__
from meetbot.archive.store import AnalysisArchive
from meetbot.errors import ArchiveCorruptError
from meetbot.system_metrics import get_metrics_snapshot

logger = logging.getLogger("meetbot.api")

StatusProvider = Callable[[], dict[str, Any]]


def create_app(archive: AnalysisArchive, status: Optional[StatusProvider] = None) -> FastAPI:
    """Read-only status surface served next to a running agent."""
    app = FastAPI(title="Meetbot status", version=__version__)

    @app.get("/health")
    async def health():
        payload = {"status": "ok", "service": "meetbot"}
        if status is not None:
            payload.update(status())
        return payload

    @app.get("/api/analyses")
    def list_analyses(limit: Optional[int] = Query(default=20, ge=1, le=500)):
        try:
            records = archive.list_all(limit=limit)
        except ArchiveCorruptError as exc:
            logger.error("Analysis archive unreadable: %s", exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"count": len(records), "analyses": [record.to_dict() for record in records]}

    @app.get("/api/metrics")
    def metrics():
        return get_metrics_snapshot(extra={"archive_records": archive.count()})

    return app
