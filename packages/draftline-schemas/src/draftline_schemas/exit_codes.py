"""CLI exit code taxonomy and error-to-exit-code registry.

Exit code ranges:
- 0: Success
- 10-19: Client/input errors (config, validation)
- 20-29: Session errors (pipeline failure, recovery timeout, invalid state)
- 30-39: External service errors (transport)
- 99: Unexpected runtime errors
"""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """CLI exit codes by failure category."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    VALIDATION_ERROR = 11
    PIPELINE_ERROR = 20
    RECOVERY_TIMEOUT = 21
    SESSION_STATE_ERROR = 22
    TRANSPORT_ERROR = 30
    RUNTIME_ERROR = 99


# Session error codes are qualified with the "session." prefix; CLI-level
# codes are stored without a prefix.
ERROR_CODE_TO_EXIT_CODE: dict[str, ExitCode] = {
    "config_error": ExitCode.CONFIG_ERROR,
    "validation_error": ExitCode.VALIDATION_ERROR,
    "runtime_error": ExitCode.RUNTIME_ERROR,
    "session.pipeline_failure": ExitCode.PIPELINE_ERROR,
    "session.recovery_timeout": ExitCode.RECOVERY_TIMEOUT,
    "session.invalid_state": ExitCode.SESSION_STATE_ERROR,
    "session.transport_failure": ExitCode.TRANSPORT_ERROR,
    "session.malformed_event": ExitCode.VALIDATION_ERROR,
}


def resolve_exit_code(error_code: str, *, domain: str | None = None) -> ExitCode:
    """Resolve an error code string to its ExitCode.

    Args:
        error_code: The error code string (e.g. "config_error",
            "pipeline_failure").
        domain: Optional domain prefix (e.g. "session"). When provided, the
            lookup uses ``"{domain}.{error_code}"`` first, falling back to an
            unqualified lookup.

    Returns:
        The matching ExitCode, or RUNTIME_ERROR if no mapping is found.
    """
    if domain:
        qualified = f"{domain}.{error_code}"
        if qualified in ERROR_CODE_TO_EXIT_CODE:
            return ERROR_CODE_TO_EXIT_CODE[qualified]

    if error_code in ERROR_CODE_TO_EXIT_CODE:
        return ERROR_CODE_TO_EXIT_CODE[error_code]

    return ExitCode.RUNTIME_ERROR
