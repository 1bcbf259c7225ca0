class ServiceError(Exception):
    """Base class for errors raised by the service layer."""


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, message: str = "Banner not found"):
        super().__init__(message)
        self.message = message


class StoreError(ServiceError):
    """Persistence failure (connectivity, constraint, driver error). Never retried here."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
