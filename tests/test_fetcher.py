import aiohttp
import pytest

from pipelines.errors import FetchError
from pipelines.fetcher import ReadmeFetcher


class FakeResponse:
    def __init__(self, status=200, body="", reason="OK"):
        self.status = status
        self.reason = reason
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Replays responses (or raises exceptions) in order."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []
        self.closed = False

    def get(self, url, **kwargs):
        self.requests.append((url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def close(self):
        self.closed = True


def make_fetcher(session, **kwargs):
    return ReadmeFetcher(url="https://example.com/README.md", session=session,
                         retry_delay=0, **kwargs)


class TestReadmeFetcher:
    """Retrieval with bounded retries."""

    @pytest.mark.asyncio
    async def test_fetch_success(self):
        session = FakeSession(FakeResponse(body="# README"))
        fetcher = make_fetcher(session)
        assert await fetcher.fetch_raw() == "# README"
        assert session.requests[0][0] == "https://example.com/README.md"
        assert session.requests[0][1]["allow_redirects"] is True

    @pytest.mark.asyncio
    async def test_retryable_status_is_retried(self):
        session = FakeSession(FakeResponse(status=503, reason="Service Unavailable"),
                              FakeResponse(body="ok"))
        assert await make_fetcher(session).fetch_raw() == "ok"
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_client_error_status_fails_fast(self):
        session = FakeSession(FakeResponse(status=404, reason="Not Found"))
        with pytest.raises(FetchError) as exc_info:
            await make_fetcher(session).fetch_raw()
        assert exc_info.value.status_code == 404
        assert "HTTP 404" in str(exc_info.value)
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_retryable_status_exhausts_retries(self):
        session = FakeSession(*[FakeResponse(status=502, reason="Bad Gateway") for _ in range(3)])
        with pytest.raises(FetchError) as exc_info:
            await make_fetcher(session, max_retries=2).fetch_raw()
        assert exc_info.value.status_code == 502
        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_connection_errors_are_retried(self):
        session = FakeSession(aiohttp.ClientConnectionError("reset"), FakeResponse(body="ok"))
        assert await make_fetcher(session).fetch_raw() == "ok"

    @pytest.mark.asyncio
    async def test_transport_failure_raises_fetch_error(self):
        errors = [aiohttp.ClientConnectionError("down") for _ in range(3)]
        session = FakeSession(*errors)
        with pytest.raises(FetchError) as exc_info:
            await make_fetcher(session, max_retries=2).fetch_raw()
        assert isinstance(exc_info.value.__cause__, aiohttp.ClientConnectionError)
        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_external_session_is_not_closed(self):
        session = FakeSession()
        fetcher = make_fetcher(session)
        await fetcher.close()
        assert not session.closed
        assert fetcher.session is session

    @pytest.mark.asyncio
    async def test_undecodable_body_raises_fetch_error(self):
        class BadBodyResponse(FakeResponse):
            async def text(self):
                return b"## A\n\xff\xfe bad".decode("utf-8")

        session = FakeSession(BadBodyResponse())
        with pytest.raises(FetchError) as exc_info:
            await make_fetcher(session).fetch_raw()
        assert exc_info.value.status_code == 200
        assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)
        assert len(session.requests) == 1

    def test_retry_delay_is_bounded(self):
        fetcher = ReadmeFetcher(retry_delay=1.0, max_retry_delay=5.0)
        assert 1.0 <= fetcher._calculate_retry_delay(0) <= 1.3
        assert fetcher._calculate_retry_delay(10) == 5.0
