from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import BinaryIO, Optional

from core.config import Settings
from meetbot.agent import MeetAgent, build_context

logger = logging.getLogger("meetbot.main")


def _force_exit(code: int) -> None:
    logging.shutdown()
    os._exit(code)


async def run_agent(settings: Settings, audio_source: Optional[BinaryIO] = None) -> int:
    """
    Run the agent until SIGINT or SIGTERM, then shut down gracefully.
    A second signal, or a shutdown that outlasts SHUTDOWN_TIMEOUT_SEC, exits immediately.
    """
    loop = asyncio.get_running_loop()
    shutdown_requested = asyncio.Event()

    def _on_signal(sig: signal.Signals) -> None:
        if shutdown_requested.is_set():
            logger.warning("Received %s during shutdown; forcing exit", sig.name)
            _force_exit(1)
        logger.info("Received %s; shutting down gracefully", sig.name)
        shutdown_requested.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig)

    agent = MeetAgent(build_context(settings), audio_source=audio_source)
    try:
        await agent.start()
    except Exception as exc:
        logger.error("Agent failed to start: %s", exc)
        await asyncio.wait_for(agent.shutdown(grace_sec=1.0), timeout=settings.shutdown_timeout_sec)
        return 1

    await shutdown_requested.wait()

    grace = max(0.0, settings.shutdown_timeout_sec - 1.0)
    try:
        await asyncio.wait_for(agent.shutdown(grace_sec=grace), timeout=settings.shutdown_timeout_sec)
    except asyncio.TimeoutError:
        logger.error("Forced exit after %.0fs shutdown timeout", settings.shutdown_timeout_sec)
        _force_exit(1)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    if audio_source is not None:
        # a reader thread blocked on stdin would keep the loop from closing
        _force_exit(0)
    return 0


def main(settings: Settings, audio_stdin: bool = False) -> int:
    audio_source = sys.stdin.buffer if audio_stdin else None
    return asyncio.run(run_agent(settings, audio_source=audio_source))
