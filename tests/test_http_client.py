import pytest
import requests

from services.errors import UpstreamError, UpstreamRateLimitError
from services.http_client import UpstreamClient, goflow_url


class _Resp:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _Session:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, headers=None, json=None, timeout=None):
        self.calls.append({"method": method, "url": url, "headers": headers, "json": json, "timeout": timeout})
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def _client(responses, **kwargs):
    sleeps = []
    session = _Session(responses)
    client = UpstreamClient(
        lambda: {"Authorization": "Bearer t", "Content-Type": "application/json"},
        session=session,
        sleep=sleeps.append,
        timeout=5,
        max_attempts=3,
        **kwargs,
    )
    return client, session, sleeps


def test_retries_rate_limit_then_succeeds():
    client, session, sleeps = _client([_Resp(429), _Resp(200, {"ok": True})])

    assert client.get_json("https://api.test/x") == {"ok": True}
    assert len(session.calls) == 2
    assert sleeps == [1]
    assert session.calls[0]["timeout"] == 5


def test_persistent_rate_limit_raises_after_backoff():
    client, session, sleeps = _client([_Resp(429), _Resp(429), _Resp(429)])

    with pytest.raises(UpstreamRateLimitError) as excinfo:
        client.get("https://api.test/x")
    assert excinfo.value.status_code == 429
    assert sleeps == [1, 2]


def test_other_error_status_fails_immediately():
    client, session, sleeps = _client([_Resp(500, text="boom")])

    with pytest.raises(UpstreamError) as excinfo:
        client.get("https://api.test/x")
    assert excinfo.value.status_code == 500
    assert not isinstance(excinfo.value, UpstreamRateLimitError)
    assert len(session.calls) == 1
    assert sleeps == []


def test_timeout_is_retried():
    client, session, sleeps = _client([requests.exceptions.Timeout(), _Resp(200, {"ok": 1})])

    assert client.get_json("https://api.test/x") == {"ok": 1}
    assert sleeps == [1]


def test_connection_errors_exhaust_attempts():
    errors = [requests.exceptions.ConnectionError("down") for _ in range(3)]
    client, session, sleeps = _client(errors)

    with pytest.raises(UpstreamError):
        client.get("https://api.test/x")
    assert len(session.calls) == 3


def test_non_json_body_is_upstream_error():
    client, _, _ = _client([_Resp(200, None, text="<html>")])
    with pytest.raises(UpstreamError):
        client.get_json("https://api.test/x")


def test_iter_pages_follows_next_links():
    client, session, _ = _client(
        [
            _Resp(200, {"data": [{"id": 1}, {"id": 2}], "next": "https://api.test/x?cursor=2"}),
            _Resp(200, {"data": [{"id": 3}], "next": None}),
        ]
    )

    assert client.fetch_all("https://api.test/x") == [{"id": 1}, {"id": 2}, {"id": 3}]
    assert [call["url"] for call in session.calls] == ["https://api.test/x", "https://api.test/x?cursor=2"]


def test_download_uses_download_headers():
    client, session, _ = _client(
        [_Resp(200, [{"row": 1}])],
        download_headers=lambda: {"Authorization": "Bearer t"},
    )

    assert client.download_json("https://files.test/report.json") == [{"row": 1}]
    assert session.calls[0]["headers"] == {"Authorization": "Bearer t"}


def test_goflow_url_joins_base():
    assert goflow_url("/orders", "https://api.test/v1/") == "https://api.test/v1/orders"
