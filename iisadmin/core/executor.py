"""Retrying request executor.

One logical call is executed with a bounded number of attempts. Every attempt
builds and prepares a brand-new request, so NTLM negotiation state and the
JSON body are never replayed from a previous TCP exchange. Backoff is
exponential and runs through a CancelToken so a caller (or the per-call
deadline) can interrupt it.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from iisadmin.core.auth import TransportAuthenticator
from iisadmin.core.errors import (
    Cancelled,
    DeadlineExceeded,
    NetworkError,
    RetryableError,
    UnexpectedResponse,
    error_for_status,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/hal+json",
    "Accept-Language": "en-US,en;q=0.9",
    "X-Requested-With": "XMLHttpRequest",
}


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, RetryableError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 16.0
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    call_timeout: Optional[float] = None
    retry_forbidden: bool = True
    retryable: Callable[[BaseException], bool] = is_retryable

    def delay(self, attempt: int) -> float:
        """Backoff slept after the given (1-based) failed attempt."""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    def worst_case_backoff(self) -> float:
        return sum(self.delay(a) for a in range(1, self.max_attempts))

    def effective_call_timeout(self) -> float:
        if self.call_timeout is not None:
            return self.call_timeout
        # all sleeps, one slow request, and slack on top
        return self.worst_case_backoff() + self.connect_timeout + self.read_timeout + 30.0


class CancelToken:
    """External cancellation signal with an optional monotonic deadline."""

    def __init__(self, deadline: Optional[float] = None, event: Optional[threading.Event] = None) -> None:
        self._event = event or threading.Event()
        self.deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelToken":
        return cls(deadline=time.monotonic() + seconds)

    def child(self, seconds: Optional[float]) -> "CancelToken":
        """Token sharing this cancel event with a deadline no later than ``seconds`` from now."""
        deadline = self.deadline
        if seconds is not None:
            own = time.monotonic() + seconds
            deadline = own if deadline is None else min(deadline, own)
        return CancelToken(deadline=deadline, event=self._event)

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("call cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise DeadlineExceeded("call deadline exceeded")

    def sleep(self, seconds: float) -> None:
        remaining = self.remaining()
        if remaining is not None and remaining < seconds:
            if self._event.wait(max(remaining, 0)):
                raise Cancelled("call cancelled during backoff")
            raise DeadlineExceeded("call deadline exceeded during backoff")
        if self._event.wait(seconds):
            raise Cancelled("call cancelled during backoff")


class RequestExecutor:
    def __init__(
        self,
        session: requests.Session,
        host: str,
        authenticator: TransportAuthenticator,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.session = session
        self.host = host.rstrip("/")
        self.authenticator = authenticator
        self.policy = policy or RetryPolicy()

    def url_for(self, path: str) -> str:
        return f"{self.host}{path}"

    def execute(self, method: str, path: str, body: Any = None, cancel: Optional[CancelToken] = None) -> bytes:
        """Run one logical call and return the raw response body.

        Raises a RequestError subclass annotated with method, URL, status and
        body once retries are exhausted or the failure is terminal, and
        Cancelled when ``cancel`` fires or the per-call deadline passes.
        """
        method = method.upper()
        url = self.url_for(path)
        token = (cancel or CancelToken()).child(self.policy.effective_call_timeout())
        retrying = Retrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(multiplier=self.policy.base_delay, exp_base=2, max=self.policy.max_delay),
            retry=retry_if_exception(self.policy.retryable),
            sleep=token.sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return retrying(self._attempt, method, url, body, token)

    def _build(self, method: str, url: str, body: Any) -> requests.PreparedRequest:
        headers = dict(DEFAULT_HEADERS)
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(body).encode("utf-8")
        req = requests.Request(method, url, headers=headers, data=data, auth=self.authenticator)
        return self.session.prepare_request(req)

    def _timeout(self, token: CancelToken):
        connect, read = self.policy.connect_timeout, self.policy.read_timeout
        remaining = token.remaining()
        if remaining is not None:
            connect, read = min(connect, remaining), min(read, remaining)
        return connect, read

    def _attempt(self, method: str, url: str, body: Any, token: CancelToken) -> bytes:
        token.raise_if_cancelled()
        prepared = self._build(method, url, body)
        settings = self.session.merge_environment_settings(prepared.url, {}, None, None, None)
        logger.debug("%s %s", method, url)
        try:
            response = self.session.send(prepared, timeout=self._timeout(token), **settings)
        except requests.RequestException as e:
            token.raise_if_cancelled()
            raise NetworkError(method, url, reason=str(e)) from e

        status = response.status_code
        if 200 <= status < 400:
            return response.content
        error = error_for_status(method, url, status, response.text, retry_forbidden=self.policy.retry_forbidden)
        response.close()
        token.raise_if_cancelled()
        raise error

    def _log_retry(self, retry_state) -> None:
        err = retry_state.outcome.exception()
        reason = err.status if getattr(err, "status", None) is not None else err.__class__.__name__
        logger.warning(
            "%s %s attempt %d/%d failed (%s), retrying in %.2fs",
            getattr(err, "method", "?"),
            getattr(err, "url", "?"),
            retry_state.attempt_number,
            self.policy.max_attempts,
            reason,
            retry_state.next_action.sleep,
        )

    def get_json(self, path: str, cancel: Optional[CancelToken] = None) -> Any:
        return _decode("GET", self.url_for(path), self.execute("GET", path, cancel=cancel))

    def post_json(self, path: str, body: Any, cancel: Optional[CancelToken] = None) -> Any:
        return _decode("POST", self.url_for(path), self.execute("POST", path, body, cancel=cancel))

    def patch_json(self, path: str, body: Any, cancel: Optional[CancelToken] = None) -> Any:
        return _decode("PATCH", self.url_for(path), self.execute("PATCH", path, body, cancel=cancel))

    def delete(self, path: str, cancel: Optional[CancelToken] = None) -> None:
        self.execute("DELETE", path, cancel=cancel)


def _decode(method: str, url: str, content: bytes) -> Any:
    if not content:
        return None
    try:
        return json.loads(content)
    except ValueError:
        body = content[:512].decode("utf-8", errors="replace")
        raise UnexpectedResponse(method, url, "response body is not JSON", body=body) from None
