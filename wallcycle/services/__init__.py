"""Network services used by remote wallpaper sources."""

from .http_client import DownloadTooSmall, HttpClient, NetworkError, RETRYABLE_STATUSES

__all__ = ["DownloadTooSmall", "HttpClient", "NetworkError", "RETRYABLE_STATUSES"]
