"""MyInvois API errors."""


class MyInvoisApiError(Exception):
    """Base exception for MyInvois API errors."""
    def __init__(self, message: str, status_code: int = 0, response_body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class MyInvoisAuthenticationError(MyInvoisApiError):
    """Authentication failed (401/403 or token endpoint refusal)."""
    pass


class MyInvoisNotFoundError(MyInvoisApiError):
    """Document or submission not found (404)."""
    pass


class MyInvoisRateLimitError(MyInvoisApiError):
    """Rate limit exceeded (429)."""
    def __init__(self, message: str, retry_after: int = 60):
        super().__init__(message, 429)
        self.retry_after = retry_after


class MyInvoisValidationError(MyInvoisApiError):
    """Request rejected by MyInvois validation (400/422)."""
    pass
