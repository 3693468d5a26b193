from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class UnauthorizedError(AppError):
    pass


class ValidationError(AppError):
    pass


class DecodeError(AppError):
    """A realtime payload or query row did not match the expected schema."""


class NetworkError(AppError):
    """A call to the remote platform failed."""

    def __init__(self, detail: str = "", status: int | None = None) -> None:
        self.status = status
        super().__init__(detail)


class SubscribeError(AppError):
    """The realtime transport rejected or timed out a channel join."""


class PartialFailureError(AppError):
    """An attachment placeholder row exists but its upload or metadata patch failed."""

    def __init__(self, detail: str, message_id: int) -> None:
        self.message_id = message_id
        super().__init__(detail)
