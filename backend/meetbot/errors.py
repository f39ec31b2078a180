class MeetbotError(Exception):
    """Base class for errors raised by meetbot components."""


class ConfigError(MeetbotError):
    """A required setting is missing or invalid; raised before serving starts."""


class GenerationError(MeetbotError):
    """The answer could not be generated for the current utterance."""


class ArchiveError(MeetbotError):
    """An analysis record could not be written or read."""


class ArchiveCorruptError(ArchiveError):
    def __init__(self, path, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt analysis record {path}: {reason}")
