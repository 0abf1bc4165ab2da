from __future__ import annotations

import logging
import threading
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urljoin
from urllib.request import Request, urlopen

from ..cache import AdvisoryCache
from ..config import MAX_RETRIES_RANGE, HttpConfig
from ..models import AdvisoryRecord
from ..utils import clamp, log_event
from .advisory_parse import parse_advisory


RETRYABLE_STATUS_CODES = {429, 503}
BACKOFF_SECONDS_PER_ATTEMPT = 2


class RunCancelled(Exception):
    pass


class FetchFailed(RuntimeError):
    def __init__(self, identifier: str, attempts: int, cause: BaseException | None) -> None:
        super().__init__(f"fetch failed for {identifier} after {attempts} attempt(s): {cause}")
        self.identifier = identifier
        self.attempts = attempts
        self.cause = cause


class _Transient(Exception):
    pass


class AdvisoryFetcher:
    """Read-through cache in front of the Parents Guide page.

    ``fetch`` returns ``None`` when the title does not exist upstream and
    raises ``FetchFailed`` once retries are exhausted or on a non-transient
    error. Backoff waits go through the cancellation event so a cancelled
    run never issues another request.
    """

    def __init__(
        self,
        cache: AdvisoryCache,
        *,
        base_url: str,
        user_agent: str,
        accept_language: str,
        timeout_seconds: int = 30,
        max_retries: int = 3,
        opener: Callable[..., Any] = urlopen,
        cancel_event: threading.Event | None = None,
        waiter: Callable[[float], bool] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache = cache
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.headers = {"User-Agent": user_agent, "Accept-Language": accept_language}
        self.timeout_seconds = timeout_seconds
        self.max_retries = clamp(int(max_retries), *MAX_RETRIES_RANGE)
        self.requests_made = 0
        self._opener = opener
        self._cancel_event = cancel_event or threading.Event()
        self._wait = waiter or self._cancel_event.wait
        self._logger = logger or logging.getLogger("nuditytagger.fetch")

    @classmethod
    def from_config(
        cls,
        cache: AdvisoryCache,
        http: HttpConfig,
        *,
        cancel_event: threading.Event | None = None,
        logger: logging.Logger | None = None,
    ) -> "AdvisoryFetcher":
        return cls(
            cache,
            base_url=http.base_url,
            user_agent=http.user_agent,
            accept_language=http.accept_language,
            timeout_seconds=http.timeout_seconds,
            max_retries=http.max_retries,
            cancel_event=cancel_event,
            logger=logger,
        )

    def advisory_url(self, identifier: str) -> str:
        return urljoin(self.base_url, f"{quote(identifier, safe='')}/parentalguide")

    def fetch(self, identifier: str, max_retries: int | None = None) -> AdvisoryRecord | None:
        cached = self.cache.get(identifier)
        if cached is not None:
            return cached

        attempts = self.max_retries if max_retries is None else clamp(int(max_retries), *MAX_RETRIES_RANGE)

        url = self.advisory_url(identifier)
        last_error: BaseException | None = None
        for attempt in range(1, attempts + 1):
            self._raise_if_cancelled()
            try:
                markup = self._download(url)
            except HTTPError as exc:
                if exc.code == 404:
                    log_event(self._logger, logging.INFO, "advisory_not_found", identifier=identifier)
                    return None
                if exc.code not in RETRYABLE_STATUS_CODES:
                    self._log_failure(identifier, attempt, exc)
                    raise FetchFailed(identifier, attempt, exc) from exc
                last_error = exc
            except _Transient as exc:
                last_error = exc.__cause__ or exc
            except Exception as exc:  # noqa: BLE001
                self._log_failure(identifier, attempt, exc)
                raise FetchFailed(identifier, attempt, exc) from exc
            else:
                record = parse_advisory(markup, identifier)
                self.cache.put(identifier, record)
                return record

            if attempt < attempts:
                delay = attempt * BACKOFF_SECONDS_PER_ATTEMPT
                log_event(
                    self._logger,
                    logging.WARNING,
                    "advisory_fetch_retry",
                    identifier=identifier,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=last_error,
                )
                if self._wait(delay):
                    raise RunCancelled(f"cancelled while backing off for {identifier}")

        self._log_failure(identifier, attempts, last_error)
        raise FetchFailed(identifier, attempts, last_error)

    def _download(self, url: str) -> str:
        request = Request(url, headers=self.headers)
        self.requests_made += 1
        try:
            with self._opener(request, timeout=self.timeout_seconds) as response:
                raw = response.read()
        except HTTPError:
            raise
        except (URLError, TimeoutError, ConnectionError) as exc:
            raise _Transient(str(exc)) from exc
        if not isinstance(raw, bytes):
            raise ValueError(f"unexpected response body type {type(raw).__name__}")
        return raw.decode("utf-8", errors="replace")

    def _raise_if_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise RunCancelled("cancellation requested")

    def _log_failure(self, identifier: str, attempts: int, error: BaseException | None) -> None:
        log_event(
            self._logger,
            logging.ERROR,
            "advisory_fetch_failed",
            identifier=identifier,
            attempts=attempts,
            error=error,
        )
