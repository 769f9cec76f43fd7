"""
Exceptions raised by the Dynamics client.
ConfigError is fatal at construction; AuthError surfaces after internal retries are exhausted;
ApiError is raised immediately and carries enough context to diagnose the failed call.
"""


class DynamicsError(Exception):
    """Base class for every error raised by dynamics_client."""


class ConfigError(DynamicsError):
    """Missing or malformed credentials, or an unreadable credentials file."""


class AuthError(DynamicsError):
    """Authentication could not be established."""

    def __init__(self, message: str, *, attempts: int = 0, http_status: int | None = None):
        super().__init__(message)
        self.message = message
        self.attempts = attempts
        self.http_status = http_status


class ApiError(DynamicsError):
    """A request against the data API failed."""

    def __init__(
        self,
        message: str,
        *,
        http_status: int | None = None,
        url: str | None = None,
        method: str | None = None,
        raw_body: str | None = None,
        request_body: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.url = url
        self.method = method
        self.raw_body = raw_body
        self.request_body = request_body

    @property
    def context(self) -> dict:
        return {"url": self.url, "method": self.method, "raw_body": self.raw_body}

    def __str__(self) -> str:
        lines = [f"HTTP status code: {self.http_status if self.http_status is not None else 'n/a'}"]
        if self.method or self.url:
            lines.append(f"{self.method or ''} {self.url or ''}".strip())
        lines.append(f"Error: {self.message}")
        if self.raw_body is not None and self.raw_body != self.message:
            lines.append(f"Response: {self.raw_body}")
        if self.request_body is not None:
            lines.append(f"Request data: {self.request_body}")
        return "\n".join(lines)
