"""Unit tests for src.retrieval.http_client covering retries, token rotation and the rate-limit budget.

Execute with coverage to validate networking helpers:
    pytest tests/test_http_client.py --maxfail=1 -v --cov=src.retrieval.http_client --cov-report=term-missing
"""

from typing import Any, Dict
from unittest.mock import MagicMock, patch

import pytest
import requests

from src.retrieval import http_client


def _make_resp(status: int = 200, payload: Any = None, headers: Dict[str, str] | None = None):
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    if payload is None:
        payload = {}
    resp.json.return_value = payload
    resp.text = str(payload)
    return resp


def _session(tokens=("t1",), responses=None):
    raw = MagicMock()
    if responses is not None:
        raw.request.side_effect = responses
    budget = http_client.RateLimitBudget(sleeper=lambda _: None)
    return http_client.GitHubSession(list(tokens), base_url="https://api.test", budget=budget, session=raw), raw


def test_sleep_with_jitter(monkeypatch):
    called = {}
    monkeypatch.setattr(http_client.time, "sleep", lambda value: called.setdefault("val", value))
    http_client.sleep_with_jitter(1.5)
    assert isinstance(called["val"], float)
    assert 1.0 < called["val"] < 2.0


def test_log_http_error_handles_json_and_text():
    resp = _make_resp(403, {"message": "bad"})
    assert http_client.log_http_error(resp, "url") == "bad"

    resp = _make_resp(429)
    resp.json.side_effect = ValueError()
    resp.text = "plain"
    assert http_client.log_http_error(resp, "url") == "plain"


def test_resource_for_url():
    assert http_client.resource_for_url("https://api.github.com/search/code") == "code_search"
    assert http_client.resource_for_url("https://api.github.com/search/issues") == "search"
    assert http_client.resource_for_url("https://api.github.com/repos/o/r") == "core"


def test_url_joins_paths_and_keeps_absolute_urls():
    gh, _ = _session()
    assert gh.url("/repos/o/r") == "https://api.test/repos/o/r"
    assert gh.url("repos/o/r") == "https://api.test/repos/o/r"
    assert gh.url("https://other/x") == "https://other/x"


def test_token_rotation_wraps():
    gh, _ = _session(tokens=("t1", "t2"))
    assert gh.auth_headers() == {"Authorization": "Bearer t1"}
    assert gh.switch_to_next_token() is True
    assert gh.auth_headers() == {"Authorization": "Bearer t2"}
    assert gh.switch_to_next_token() is True
    assert gh.token_index == 0

    solo, _ = _session(tokens=("solo",))
    assert solo.switch_to_next_token() is False


def test_request_success_sends_bearer_token():
    gh, raw = _session(responses=[_make_resp(200, {"ok": 1})])
    resp = gh.request_with_backoff("GET", "/x")
    assert resp.status_code == 200
    kwargs = raw.request.call_args.kwargs
    assert kwargs["headers"]["Authorization"] == "Bearer t1"
    assert raw.request.call_args.args == ("GET", "https://api.test/x")


@patch("src.retrieval.http_client.sleep_with_jitter", lambda *_: None)
def test_get_retries_on_exception():
    gh, raw = _session(responses=[requests.RequestException("boom"), _make_resp(200, {"ok": 1})])
    resp = gh.request_with_backoff("GET", "/x")
    assert resp.status_code == 200
    assert raw.request.call_count == 2


@patch("src.retrieval.http_client.sleep_with_jitter", lambda *_: None)
def test_post_is_not_retried_after_exception():
    gh, raw = _session(responses=[requests.RequestException("boom"), _make_resp(200, {})])
    with pytest.raises(requests.RequestException):
        gh.request_with_backoff("POST", "/x", json={})
    assert raw.request.call_count == 1


@patch("src.retrieval.http_client.sleep_with_jitter", lambda *_: None)
def test_get_retries_server_errors_but_post_does_not():
    gh, raw = _session(responses=[_make_resp(502), _make_resp(200)])
    assert gh.request_with_backoff("GET", "/x").status_code == 200
    assert raw.request.call_count == 2

    gh, raw = _session(responses=[_make_resp(502), _make_resp(200)])
    assert gh.request_with_backoff("PUT", "/x", json={}).status_code == 502
    assert raw.request.call_count == 1


@patch("src.retrieval.http_client.sleep_with_jitter", lambda *_: None)
def test_rate_limit_switches_token():
    limited = _make_resp(403, {"message": ""}, headers={"X-RateLimit-Remaining": "0"})
    gh, raw = _session(tokens=("t1", "t2"), responses=[limited, _make_resp(200, {"ok": True})])
    resp = gh.request_with_backoff("POST", "/x", json={})
    assert resp.status_code == 200
    second_headers = raw.request.call_args_list[1].kwargs["headers"]
    assert second_headers["Authorization"] == "Bearer t2"


def test_retry_after_wait():
    waits = []
    limited = _make_resp(403, {"message": ""}, headers={"Retry-After": "7"})
    gh, _ = _session(responses=[limited, _make_resp(200, {"ok": True})])
    with patch("src.retrieval.http_client.sleep_with_jitter", side_effect=waits.append):
        resp = gh.request_with_backoff("GET", "/x")
    assert resp.status_code == 200
    assert waits == [7]


def test_forbidden_without_rate_limit_is_returned():
    gh, raw = _session(responses=[_make_resp(403, {"message": "Resource not accessible"})])
    assert gh.request_with_backoff("GET", "/x").status_code == 403
    assert raw.request.call_count == 1


def test_unauthorized_with_single_token_is_returned():
    gh, raw = _session(responses=[_make_resp(401, {"message": "Bad credentials"})])
    assert gh.request_with_backoff("GET", "/x").status_code == 401
    assert raw.request.call_count == 1


@patch("src.retrieval.http_client.log_http_error")
def test_terminal_error_returns_resp(mock_log):
    resp = _make_resp(404, {})
    gh, _ = _session(responses=[resp])
    assert gh.request_with_backoff("GET", "/x") is resp
    mock_log.assert_called_once()


def test_budget_waits_until_reset():
    slept = []
    budget = http_client.RateLimitBudget(reserve=5, clock=lambda: 1000, sleeper=slept.append)
    budget.update({"X-RateLimit-Remaining": "3", "X-RateLimit-Reset": "1010"})
    assert budget.remaining("core") == 3
    assert budget.wait_if_exhausted("core") == 11.0
    assert slept == [11]
    assert budget.remaining("core") is None
    assert budget.wait_if_exhausted("core") == 0.0


def test_budget_tracks_resources_separately():
    slept = []
    budget = http_client.RateLimitBudget(reserve=1, clock=lambda: 0, sleeper=slept.append)
    budget.update({"X-RateLimit-Remaining": "0"}, "code_search")
    budget.update({"X-RateLimit-Remaining": "4000"}, "core")
    assert budget.wait_if_exhausted("core") == 0.0
    assert budget.wait_if_exhausted("code_search") > 0
    assert len(slept) == 1


def test_session_consults_budget_before_each_request():
    slept = []
    raw = MagicMock()
    raw.request.side_effect = [
        _make_resp(200, headers={"X-RateLimit-Remaining": "1", "X-RateLimit-Reset": "1005"}),
        _make_resp(200),
    ]
    budget = http_client.RateLimitBudget(reserve=2, clock=lambda: 1000, sleeper=slept.append)
    gh = http_client.GitHubSession(["t"], budget=budget, session=raw)
    gh.request_with_backoff("GET", "/a")
    assert slept == []
    gh.request_with_backoff("GET", "/b")
    assert slept == [6]


def test_code_search_budget_pauses_next_search_call():
    slept = []
    raw = MagicMock()
    exhausted = {
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "1030",
        "X-RateLimit-Resource": "code_search",
    }
    raw.request.side_effect = [_make_resp(200, headers=exhausted), _make_resp(200)]
    budget = http_client.RateLimitBudget(reserve=0, clock=lambda: 1000, sleeper=slept.append)
    gh = http_client.GitHubSession(["t"], budget=budget, session=raw)
    gh.request_with_backoff("GET", "/search/code", params={"q": "x"})
    assert slept == []
    assert gh.budget.remaining("code_search") == 0
    gh.request_with_backoff("GET", "/search/code", params={"q": "x"})
    assert slept == [31]


def test_unauthorized_tries_each_token_once_then_returns():
    gh, raw = _session(tokens=("bad1", "bad2"))
    raw.request.return_value = _make_resp(401, {"message": "Bad credentials"})
    resp = gh.request_with_backoff("GET", "/search/code")
    assert resp.status_code == 401
    assert raw.request.call_count == 2


@patch("src.retrieval.http_client.sleep_with_jitter", lambda *_: None)
def test_exhausted_rate_limit_retries_return_last_response():
    raw = MagicMock()
    raw.request.return_value = _make_resp(429, {"message": "slow down"}, headers={"Retry-After": "1"})
    budget = http_client.RateLimitBudget(sleeper=lambda _: None)
    gh = http_client.GitHubSession(["t"], budget=budget, session=raw, max_retries=3)
    resp = gh.request_with_backoff("GET", "/x")
    assert resp.status_code == 429
    assert raw.request.call_count == 3


def test_rotate_token_reports_previous_index():
    gh, _ = _session(tokens=("t1", "t2", "t3"))
    assert gh.rotate_token() == 0
    assert gh.rotate_token() == 1
    assert gh.current_token_index() == 2
    assert gh.rotate_token() == 2
    assert gh.current_token_index() == 0
    solo, _ = _session(tokens=("solo",))
    assert solo.rotate_token() is None
