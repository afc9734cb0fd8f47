"""Generation sessions: the expiring artifact store and progress fan-out."""

from forge.sessions.broadcaster import EventKind, Listener, ProgressBroadcaster, ProgressEvent
from forge.sessions.store import GenerationArtifact, SessionStore

__all__ = [
    "EventKind",
    "GenerationArtifact",
    "Listener",
    "ProgressBroadcaster",
    "ProgressEvent",
    "SessionStore",
]
