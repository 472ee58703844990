class StoreError(Exception):
    """Base class for errors raised by the order/payment services.

    Routes do not catch these; the handler registered in ``app.main``
    turns them into ``{"detail": message}`` responses with ``status_code``.
    """

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    status_code = 400


class InvalidAmount(ValidationError):
    pass


class NotFound(StoreError):
    status_code = 404


class Forbidden(StoreError):
    status_code = 403


class InvalidTransition(StoreError):
    status_code = 400


class UpstreamError(StoreError):
    status_code = 500

    def __init__(self, message: str = "Payment provider error", *, detail: str | None = None):
        super().__init__(message)
        # raw provider text, for logs only
        self.detail = detail
