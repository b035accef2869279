class ApiError(Exception):
    """An HTTP request to the game API failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionNotFoundError(ApiError):
    """The requested session no longer exists on the server."""
