from typing import Any, Dict, Optional


class IISAdminError(Exception):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.__class__.__name__, "message": self.message, "details": self.details}


class ConfigurationError(IISAdminError):
    pass


class RequestError(IISAdminError):
    """Outcome of one logical call: method, URL, status and raw body."""

    def __init__(self, method: str, url: str, status: Optional[int] = None, body: str = "", reason: str = "") -> None:
        self.method = method
        self.url = url
        self.status = status
        self.body = body
        head = f"{method} {url} returned {status}" if status is not None else f"{method} {url} failed: {reason}"
        super().__init__(
            f"{head}\n{body}" if body else head,
            details={"method": method, "url": url, "status": status, "body": body},
        )


class RetryableError(RequestError):
    pass


class NetworkError(RetryableError):
    pass


class AuthTransient(RetryableError):
    pass


class RateLimited(RetryableError):
    pass


class ServerFault(RetryableError):
    pass


class ClientError(RequestError):
    pass


class Conflict(ClientError):
    pass


class Forbidden(ClientError):
    pass


class NotFound(ClientError):
    pass


class Invalid(ClientError):
    pass


class ProtocolError(IISAdminError):
    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        self.status = status
        self.body = body
        details: Dict[str, Any] = {}
        if status is not None:
            details["status"] = status
        if body:
            details["body"] = body
        super().__init__(message, details=details)


class MissingAntiForgeryToken(ProtocolError):
    pass


class HandshakeRequestFailed(ProtocolError):
    pass


class TokenIssuanceFailed(ProtocolError):
    pass


class UnexpectedResponse(ProtocolError):
    """A successful status whose body is not the JSON shape the endpoint documents."""

    def __init__(self, method: str, url: str, message: str, status: Optional[int] = None, body: str = "") -> None:
        self.method = method
        self.url = url
        super().__init__(f"{method} {url}: {message}", status=status, body=body)
        self.details.update(method=method, url=url)


class InvalidTokenFormat(ProtocolError):
    pass


class Cancelled(IISAdminError):
    pass


class DeadlineExceeded(Cancelled):
    pass


def error_for_status(method: str, url: str, status: int, body: str = "", retry_forbidden: bool = True) -> RequestError:
    """Map a non-success HTTP status to its error class."""
    if status == 401 or (status == 403 and retry_forbidden):
        cls = AuthTransient
    elif status == 429:
        cls = RateLimited
    elif 500 <= status < 600:
        cls = ServerFault
    elif status == 403:
        cls = Forbidden
    elif status == 409:
        cls = Conflict
    elif status == 404:
        cls = NotFound
    elif status in (400, 422):
        cls = Invalid
    else:
        cls = ClientError
    return cls(method, url, status, body)
