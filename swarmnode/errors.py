"""SwarmNode exception classes."""


class SwarmError(Exception):
    """Base exception for all SwarmNode errors."""

    code = "SWARM_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"[{self.code}] {message}")


class ValidationError(SwarmError):
    """Raised on malformed or out-of-range input."""

    code = "VALIDATION_ERROR"


class AuthorizationError(SwarmError):
    """Raised when the caller is not the required owner or operator."""

    code = "AUTHORIZATION_ERROR"


class StateError(SwarmError):
    """Raised when an operation is invalid for the entity's current status."""

    code = "STATE_ERROR"


class ReentrancyError(StateError):
    """Raised when a mutating call re-enters a component already mid-operation."""

    code = "REENTRANCY_ERROR"


class PausedError(StateError):
    """Raised on mutating calls while a component is paused."""

    code = "PAUSED"


class CapabilityMismatchError(SwarmError):
    """Raised when an agent does not cover a task's required capabilities."""

    code = "CAPABILITY_MISMATCH"

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class EscrowError(SwarmError):
    """Raised when an underlying value transfer fails."""

    code = "ESCROW_ERROR"


class DeliveryError(SwarmError):
    """Raised when forwarding a cross-partition message fails."""

    code = "DELIVERY_ERROR"


class NotFoundError(SwarmError):
    """Raised when an id is outside the valid range."""

    code = "NOT_FOUND"
