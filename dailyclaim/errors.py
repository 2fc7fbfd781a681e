class ClaimError(Exception):
    """Base class for everything the claim core raises."""


class ValidationError(ClaimError):
    """User-supplied identity fields are malformed. Raised before any network call."""


class TransportError(ClaimError):
    """Network failure, timeout, or a response with no usable body."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.status = status


class OAuthStepFailure(ClaimError):
    """One step of the SKPORT credential exchange was rejected upstream."""

    def __init__(self, step: str, message: str):
        super().__init__(f"OAuth {step} failed: {message}")
        self.step = step
        self.message = message


class NoCredentials(ClaimError):
    """No account token stored and nothing usable in the credential cache."""
