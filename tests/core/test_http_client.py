import pytest
import requests

from wallcycle.config import HttpSettings
from wallcycle.services import DownloadTooSmall, HttpClient, NetworkError


class FakeResponse:
    def __init__(self, status=200, chunks=(b"",), headers=None):
        self.status_code = status
        self.chunks = list(chunks)
        self.headers = headers or {}
        self.closed = False

    @property
    def ok(self):
        return self.status_code < 400

    def iter_content(self, chunk_size=1):
        for chunk in self.chunks:
            if isinstance(chunk, Exception):
                raise chunk
            yield chunk

    def close(self):
        self.closed = True


class FakeSession:
    def __init__(self, *replies):
        self.replies = list(replies)
        self.headers = {}
        self.calls = []

    def get(self, url, timeout=None, **kwargs):
        self.calls.append((url, timeout, kwargs))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def _client(session, retries=2):
    sleeps = []
    client = HttpClient(session, timeout=3, retries=retries, backoff_seconds=0.5, sleep=sleeps.append)
    return client, sleeps


def test_get_retries_connection_errors_with_backoff():
    session = FakeSession(
        requests.ConnectionError("reset"),
        requests.Timeout("slow"),
        FakeResponse(200),
    )
    client, sleeps = _client(session)

    response = client.get("https://img.test/a.jpg")

    assert response.status_code == 200
    assert sleeps == [0.5, 1.0]
    assert session.calls[0][1] == 3
    assert session.headers["User-Agent"].startswith("wallcycle/")


def test_get_retries_retryable_status_then_gives_up():
    session = FakeSession(FakeResponse(503), FakeResponse(503))
    client, sleeps = _client(session, retries=1)

    with pytest.raises(NetworkError) as excinfo:
        client.get("https://img.test/a.jpg")

    assert excinfo.value.status == 503
    assert excinfo.value.attempt == 2
    assert sleeps == [0.5]


def test_get_does_not_retry_client_errors():
    session = FakeSession(FakeResponse(404), FakeResponse(200))
    client, sleeps = _client(session)

    with pytest.raises(NetworkError) as excinfo:
        client.get("https://img.test/missing.jpg")

    assert excinfo.value.status == 404
    assert sleeps == []
    assert len(session.replies) == 1


def test_rate_limit_headers_are_reported():
    session = FakeSession(FakeResponse(403, headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "60"}))
    client, _ = _client(session)

    with pytest.raises(NetworkError, match=r"rate=0, reset=60"):
        client.get("https://img.test/a.jpg")


def test_connection_errors_exhaust_retries():
    session = FakeSession(*[requests.ConnectionError("down")] * 3)
    client, sleeps = _client(session)

    with pytest.raises(NetworkError) as excinfo:
        client.get("https://img.test/a.jpg")

    assert excinfo.value.attempt == 3
    assert len(sleeps) == 2


def test_download_writes_destination_atomically(tmp_path):
    session = FakeSession(FakeResponse(200, chunks=[b"abc", b"", b"def"]))
    client, _ = _client(session)
    destination = tmp_path / "pack" / "image.jpg"

    size = client.download("https://img.test/a.jpg", destination, min_bytes=4)

    assert size == 6
    assert destination.read_bytes() == b"abcdef"
    assert list(destination.parent.glob("*.part")) == []
    assert session.calls[0][2] == {"stream": True}


def test_download_rejects_tiny_payloads(tmp_path):
    response = FakeResponse(200, chunks=[b"tiny"])
    client, _ = _client(FakeSession(response))
    destination = tmp_path / "image.jpg"

    with pytest.raises(DownloadTooSmall):
        client.download("https://img.test/a.jpg", destination, min_bytes=1024)

    assert not destination.exists()
    assert list(tmp_path.iterdir()) == []
    assert response.closed


def test_download_cleans_partial_file_on_stream_error(tmp_path):
    response = FakeResponse(200, chunks=[b"abc", requests.ConnectionError("cut")])
    client, _ = _client(FakeSession(response))

    with pytest.raises(NetworkError):
        client.download("https://img.test/a.jpg", tmp_path / "image.jpg")

    assert list(tmp_path.iterdir()) == []


def test_from_settings_uses_http_section():
    settings = HttpSettings(timeout_seconds=4, retries=5, backoff_seconds=0.1)

    client = HttpClient.from_settings(settings, session=FakeSession())

    assert client.timeout == 4
    assert client.retries == 5
    assert client.backoff_seconds == 0.1
