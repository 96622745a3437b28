"""draftline-core: Session coordination, diffing, and attribution."""

from draftline_core.attribution import build_attribution
from draftline_core.coordinator import SessionCoordinator, SessionHost
from draftline_core.diff import compute_diff, diff_stats, tokenize
from draftline_core.ports import (
    EventStreamProtocol,
    LogSinkProtocol,
    MalformedEventError,
    SessionError,
    SessionErrorCode,
    SessionErrorInfo,
    StatusClientProtocol,
    TransportError,
)
from draftline_core.recovery import RecoveryOutcome, RecoveryOutcomeKind, RecoveryPoller
from draftline_core.status import build_session_status
from draftline_core.store import SessionStore
from draftline_core.transport import decode_event

__version__ = "0.1.0"

__all__ = [
    "EventStreamProtocol",
    "LogSinkProtocol",
    "MalformedEventError",
    "RecoveryOutcome",
    "RecoveryOutcomeKind",
    "RecoveryPoller",
    "SessionCoordinator",
    "SessionError",
    "SessionErrorCode",
    "SessionErrorInfo",
    "SessionHost",
    "SessionStore",
    "StatusClientProtocol",
    "TransportError",
    "__version__",
    "build_attribution",
    "build_session_status",
    "compute_diff",
    "decode_event",
    "diff_stats",
    "tokenize",
]
