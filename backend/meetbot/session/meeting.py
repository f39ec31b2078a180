from __future__ import annotations

import logging
from typing import Protocol

logger = logging.getLogger("meetbot.session.meeting")


class MeetingSession(Protocol):
    async def join(self, meet_url: str) -> None:
        ...

    async def leave(self, preserve_session: bool = True) -> None:
        ...


class NullMeetingSession:
    """
    Stand-in used when no browser automation is wired in.
    Audio then reaches the transcription source from whatever device is routed to it.
    """

    def __init__(self):
        self.joined_url = ""

    async def join(self, meet_url: str) -> None:
        self.joined_url = meet_url
        logger.info("Meeting join requested (no browser session configured): %s", meet_url or "<none>")

    async def leave(self, preserve_session: bool = True) -> None:
        if self.joined_url:
            logger.info("Leaving meeting | preserve_session=%s", preserve_session)
        self.joined_url = ""
