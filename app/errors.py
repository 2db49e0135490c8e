class OrchestratorError(Exception):
    """Base class for every error raised by the orchestration core."""


class ValidationError(OrchestratorError):
    """Missing or malformed configuration or credentials. Never retried."""


class NoRouteAvailable(OrchestratorError):
    """No active traffic rule matched the payment."""


class CircuitOpenError(OrchestratorError):
    """Raised internally when a breaker refuses a call."""

    def __init__(self, name: str):
        super().__init__(f"Circuit for '{name}' is open")
        self.name = name


class DecryptionError(OrchestratorError):
    """AEAD verification failed; the envelope is tampered or bound elsewhere."""


class VaultError(OrchestratorError):
    """A vault provider call failed."""


class AllEndpointsUnavailable(OrchestratorError):
    def __init__(self, attempted: list[str], last_error: str | None = None):
        message = f"All endpoints failed. Attempted: {', '.join(attempted) or 'none'}"
        if last_error:
            message += f". Last error: {last_error}"
        super().__init__(message)
        self.attempted = attempted
        self.last_error = last_error
