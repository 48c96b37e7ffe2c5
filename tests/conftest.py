import pytest
import requests
from requests.structures import CaseInsensitiveDict
from requests.utils import get_encoding_from_headers

from analyzer.app import create_app
from analyzer.broadcast import BroadcastChannel
from analyzer.config import Config
from analyzer.log_store import CaptureLogStore


class FakeResponse(requests.Response):
    """A real ``requests.Response`` populated the way HTTPAdapter.build_response
    populates one, so ``encoding`` and ``text`` follow requests' own rules."""

    def __init__(self, status=200, content=b"", content_type=None, headers=None,
                 read_error=None, url="https://example.com/"):
        super().__init__()
        self.status_code = status
        self.headers = CaseInsensitiveDict(headers or {})
        if content_type is not None:
            self.headers["Content-Type"] = content_type
        self.encoding = get_encoding_from_headers(self.headers)
        self.url = url
        self._content = content
        self._content_consumed = True
        self._read_error = read_error
        self.closed = False

    @property
    def content(self):
        if self._read_error is not None:
            raise self._read_error
        return self._content

    def close(self):
        self.closed = True


class FakeSession:
    """Records outbound calls and answers with a canned response or error."""

    def __init__(self, response=None, error=None):
        if response is None:
            response = FakeResponse(content=b"ok", content_type="text/plain")
        self.response = response
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return self.response


class FakeObserver:
    def __init__(self, connected=True, fail=False):
        self.connected = connected
        self.fail = fail
        self.sent = []

    def send(self, message):
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.sent.append(message)


@pytest.fixture
def channel():
    return BroadcastChannel()


@pytest.fixture
def store(channel):
    return CaptureLogStore(max_size=100, listener=channel)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def config(tmp_path):
    cfg = Config()
    cfg["storage"]["save_path"] = str(tmp_path / "data" / "logs.json")
    return cfg


@pytest.fixture
def app(config, store, session, channel):
    """Create a Flask test app wired to a fake upstream session."""
    application = create_app(config, store=store, session=session, channel=channel)
    application.config["TESTING"] = True
    return application


@pytest.fixture
def client(app):
    """Create a Flask test client."""
    return app.test_client()


@pytest.fixture
def unreachable():
    return FakeSession(error=requests.exceptions.ConnectionError("Name or service not known"))
