"""Application-specific exceptions for consistent error handling."""

from typing import Any

from fastapi import HTTPException, status


class AppError(HTTPException):
    """Application error with standardized error code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
    ):
        """Initialize application error."""
        super().__init__(
            status_code=status_code,
            detail={
                "code": code,
                "message": message,
                "details": details,
            },
        )
        self.code = code
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# ============================================================================
# Simulation engine errors
# ============================================================================


class SimulationError(AppError):
    """Base class for errors raised by the simulation engine."""

    status_code_default: int = status.HTTP_400_BAD_REQUEST
    code_default: str = "SIMULATION_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            status_code=self.status_code_default,
            code=self.code_default,
            message=message,
            details=details,
        )


class CaseUnavailable(SimulationError):
    """Case is missing or not in a publicly-consumable state."""

    status_code_default = status.HTTP_404_NOT_FOUND
    code_default = "CASE_UNAVAILABLE"


class InvalidCaseGraph(SimulationError):
    """Case graph failed publish-time validation."""

    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    code_default = "INVALID_CASE_GRAPH"


class SessionNotFound(SimulationError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code_default = "SESSION_NOT_FOUND"


class SessionTerminatedError(SimulationError):
    """Mutation attempted on a completed or abandoned session."""

    status_code_default = status.HTTP_409_CONFLICT
    code_default = "SESSION_TERMINATED"


class InvalidStateTransition(SimulationError):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "INVALID_STATE_TRANSITION"


class UnknownStep(SimulationError):
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    code_default = "UNKNOWN_STEP"


class UnknownOption(SimulationError):
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    code_default = "UNKNOWN_OPTION"


class ConcurrentModification(SimulationError):
    """Optimistic-concurrency conflict; the caller should retry the whole request."""

    status_code_default = status.HTTP_409_CONFLICT
    code_default = "CONCURRENT_MODIFICATION"
