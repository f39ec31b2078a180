# backend/core/state.py

from enum import Enum

class OrchestrationState(str, Enum):
    RECEIVED = "received"
    FEEDBACK_CHECK = "feedback_check"
    CLASSIFY = "classify"
    RETRIEVE = "retrieve"
    GENERATE = "generate"
    PERSIST = "persist"
    SPEAK = "speak"
    DONE = "done"
    ABORTED = "aborted"


class AgentState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"
