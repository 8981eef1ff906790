class CodegenError(Exception):
    """Base class for short-code failures.

    ``public_message`` is the only text that may reach an external caller;
    the underlying cause is logged where the error is raised.
    """

    public_message = "Service error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message


class InvalidIndex(CodegenError, ValueError):
    public_message = "Invalid code index"


class CodeSpaceExhausted(CodegenError):
    public_message = "Code space exhausted"


class ServiceUnavailable(CodegenError):
    public_message = "Service temporarily unavailable"


class AllocationExhausted(ServiceUnavailable):
    pass


class ConfigurationError(CodegenError):
    public_message = "Service configuration error"


class ServiceError(CodegenError):
    public_message = "Service error"


class CodeCollision(ServiceUnavailable):
    public_message = "Collision detected, retry request"
