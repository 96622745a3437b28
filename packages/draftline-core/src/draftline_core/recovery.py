"""Status polling used after the event stream drops."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum

from pydantic import Field, ValidationError

from draftline_core.ports.session import (
    DEFAULT_PIPELINE_FAILURE_MESSAGE,
    RECOVERY_TIMEOUT_MESSAGE,
    StatusClientProtocol,
    TransportError,
)
from draftline_schemas.base import BaseSchema
from draftline_schemas.config import RecoveryConfig
from draftline_schemas.primitives import JsonValue, RemoteStatus, SessionId
from draftline_schemas.session import RemoteSessionStatus

type SleepFn = Callable[[float], Awaitable[None]]
type AttemptCallback = Callable[[int, str], Awaitable[None]]


class RecoveryOutcomeKind(StrEnum):
    """How a recovery run ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class RecoveryOutcome(BaseSchema):
    """Result of polling the status endpoint."""

    kind: RecoveryOutcomeKind = Field(..., description="Outcome category")
    attempts: int = Field(..., ge=0, description="Status polls performed")
    document: str | None = Field(None, description="Final document when completed")
    metadata: dict[str, JsonValue] = Field(
        default_factory=dict, description="Result metadata when completed"
    )
    message: str | None = Field(None, description="Failure message when not completed")


class RecoveryPoller:
    """Polls the session status endpoint until the session resolves.

    The poller holds no state between runs and never touches session state;
    the caller applies the returned outcome. Cancelling the awaiting task
    stops it at the current poll or wait.
    """

    def __init__(
        self,
        status_client: StatusClientProtocol,
        config: RecoveryConfig | None = None,
        *,
        sleep: SleepFn | None = None,
    ) -> None:
        """Initialize the poller.

        Args:
            status_client: Client for the session status endpoint.
            config: Polling policy. Defaults to 40 attempts, 3 seconds apart.
            sleep: Awaitable sleep used between attempts.
        """
        self._status_client = status_client
        self._config = config or RecoveryConfig()
        self._sleep = sleep or asyncio.sleep

    @property
    def config(self) -> RecoveryConfig:
        """Polling policy in use."""
        return self._config

    async def poll(
        self,
        session_id: SessionId,
        *,
        on_attempt: AttemptCallback | None = None,
    ) -> RecoveryOutcome:
        """Poll until the session completes, fails, or the budget runs out.

        Pending statuses, transient transport failures, unreadable
        responses and ``completed`` statuses without a document all count
        as "not yet"; the poller waits and tries again. There is no wait
        after the final attempt.

        Args:
            session_id: Session to poll.
            on_attempt: Optional callback receiving the attempt number and
                the observed status (or ``"unreachable"``).

        Returns:
            RecoveryOutcome: Completed, failed, or timed out.
        """
        max_attempts = self._config.max_attempts
        for attempt in range(1, max_attempts + 1):
            status: RemoteSessionStatus | None = None
            try:
                status = await self._status_client.fetch_status(session_id)
            except (TransportError, ValidationError):
                observed = "unreachable"
            else:
                observed = str(status.status)
            if on_attempt is not None:
                await on_attempt(attempt, observed)
            if status is not None:
                outcome = _resolve(status, attempt)
                if outcome is not None:
                    return outcome
            if attempt < max_attempts:
                await self._sleep(self._config.delay_s)
        return RecoveryOutcome(
            kind=RecoveryOutcomeKind.TIMED_OUT,
            attempts=max_attempts,
            message=RECOVERY_TIMEOUT_MESSAGE,
        )


def _resolve(status: RemoteSessionStatus, attempt: int) -> RecoveryOutcome | None:
    if status.status == RemoteStatus.COMPLETED:
        if status.document is None:
            return None
        return RecoveryOutcome(
            kind=RecoveryOutcomeKind.COMPLETED,
            attempts=attempt,
            document=status.document,
            metadata=dict(status.metadata or {}),
        )
    if status.status == RemoteStatus.ERROR:
        return RecoveryOutcome(
            kind=RecoveryOutcomeKind.FAILED,
            attempts=attempt,
            message=status.message or DEFAULT_PIPELINE_FAILURE_MESSAGE,
        )
    return None
