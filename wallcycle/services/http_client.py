"""Thin wrapper around requests with timeout, bounded retry and safe downloads."""

from __future__ import annotations

import os
import tempfile
import time
from pathlib import Path
from typing import Callable, FrozenSet, Optional

import requests

from ..config import HttpSettings
from ..logging import get_logger

RETRYABLE_STATUSES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})
_DOWNLOAD_CHUNK = 64 * 1024
USER_AGENT = "wallcycle/0.1 (+https://github.com/wallcycle/wallcycle)"


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except OSError:
        pass


class NetworkError(RuntimeError):
    """Raised when a request fails for good (after retries, or immediately)."""

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status: Optional[int] = None,
        attempt: int = 1,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.attempt = attempt


class DownloadTooSmall(NetworkError):
    """The server answered, but with fewer bytes than a real image."""


class HttpClient:
    """HTTP helpers used by remote sources to fetch indexes and images."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        timeout: float = 15.0,
        retries: int = 2,
        backoff_seconds: float = 0.3,
        retry_statuses: FrozenSet[int] = RETRYABLE_STATUSES,
        sleep: Callable[[float], None] = time.sleep,
        logger=None,
    ) -> None:
        self.session = session or requests.Session()
        self.session.headers.setdefault("User-Agent", USER_AGENT)
        self.timeout = timeout
        self.retries = max(0, retries)
        self.backoff_seconds = backoff_seconds
        self.retry_statuses = retry_statuses
        self._sleep = sleep
        self.logger = logger or get_logger("wallcycle.http")

    @classmethod
    def from_settings(cls, settings: HttpSettings, **kwargs) -> "HttpClient":
        return cls(
            timeout=settings.timeout_seconds,
            retries=settings.retries,
            backoff_seconds=settings.backoff_seconds,
            **kwargs,
        )

    def _delay(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** (attempt - 1))

    def get(self, url: str, **kwargs) -> requests.Response:
        """GET ``url``, retrying connection errors and retryable HTTP statuses."""

        last_error: Optional[NetworkError] = None
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.get(url, timeout=self.timeout, **kwargs)
            except (requests.ConnectionError, requests.Timeout) as exc:
                last_error = NetworkError(str(exc), url=url, attempt=attempt)
                self.logger.debug("http.connection_error", url=url, attempt=attempt, error=str(exc))
                if attempt < attempts:
                    self._sleep(self._delay(attempt))
                    continue
                raise last_error from exc
            except requests.RequestException as exc:
                raise NetworkError(str(exc), url=url, attempt=attempt) from exc

            if response.ok:
                return response

            status = response.status_code
            if status in self.retry_statuses and attempt < attempts:
                self.logger.debug("http.retryable_status", url=url, status=status, attempt=attempt)
                response.close()
                self._sleep(self._delay(attempt))
                continue

            remaining = response.headers.get("x-ratelimit-remaining")
            reset = response.headers.get("x-ratelimit-reset")
            hint = ""
            if remaining is not None or reset is not None:
                hint = f" (rate={remaining or 'n/a'}, reset={reset or 'n/a'})"
            response.close()
            raise NetworkError(f"HTTP {status}{hint}", url=url, status=status, attempt=attempt)

        raise last_error or NetworkError("request failed", url=url, attempt=attempts)

    def download(self, url: str, destination: Path, *, min_bytes: int = 0) -> int:
        """Stream ``url`` into ``destination`` atomically and return the byte count."""

        response = self.get(url, stream=True)
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=str(destination.parent))
        size = 0
        try:
            with os.fdopen(fd, "wb") as handle:
                for chunk in response.iter_content(chunk_size=_DOWNLOAD_CHUNK):
                    if chunk:
                        handle.write(chunk)
                        size += len(chunk)
            if size < min_bytes:
                raise DownloadTooSmall(
                    f"Downloaded file is too small ({size} bytes)",
                    url=url,
                    status=response.status_code,
                )
            os.replace(tmp_name, destination)
        except requests.RequestException as exc:
            _discard(tmp_name)
            raise NetworkError(str(exc), url=url, status=response.status_code) from exc
        except BaseException:
            _discard(tmp_name)
            raise
        finally:
            response.close()

        self.logger.debug("http.downloaded", url=url, path=str(destination), size=size)
        return size
