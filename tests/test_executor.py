"""Tests for the single-request HTTP executor."""

from unittest.mock import patch

import requests

from rext.executor import execute_request


def fake_response(status_code=200, headers=None, text="", json_body=None, raw=None):
    def _json(self):
        if json_body is None:
            raise ValueError("not json")
        return json_body

    attrs = {
        "status_code": status_code,
        "headers": headers or {},
        "text": text,
        "json": _json,
    }
    if raw is not None:
        attrs["raw"] = raw
    return type("Response", (), attrs)()


class _RawHeaders:
    def __init__(self, cookies):
        self._cookies = cookies

    def getlist(self, name):
        return self._cookies if name == "Set-Cookie" else []


# ── Responses ────────────────────────────────────────────────────────────


class TestResponses:
    @patch("rext.executor.requests.request")
    def test_json_body_parsed(self, mock_req):
        mock_req.return_value = fake_response(
            headers={"Content-Type": "application/json"}, text='{"ok":true}', json_body={"ok": True}
        )
        result = execute_request("GET", "http://x/api")
        assert result.status_code == 200
        assert result.body == {"ok": True}
        assert result.raw_text == '{"ok":true}'
        assert result.headers == {"Content-Type": "application/json"}
        assert result.error is None

    @patch("rext.executor.requests.request")
    def test_text_body_fallback(self, mock_req):
        mock_req.return_value = fake_response(status_code=404, text="Not Found")
        result = execute_request("GET", "http://x/missing")
        assert result.status_code == 404
        assert result.body == "Not Found"

    @patch("rext.executor.requests.request")
    def test_set_cookies_unmerged(self, mock_req):
        raw = type("Raw", (), {"headers": _RawHeaders(["a=1; Path=/", "b=2"])})()
        mock_req.return_value = fake_response(
            headers={"Set-Cookie": "a=1; Path=/, b=2"}, text="ok", raw=raw
        )
        result = execute_request("GET", "http://x")
        assert result.set_cookies == ["a=1; Path=/", "b=2"]

    @patch("rext.executor.requests.request")
    def test_set_cookie_from_plain_headers(self, mock_req):
        mock_req.return_value = fake_response(headers={"set-cookie": "sid=abc"}, text="ok")
        result = execute_request("GET", "http://x")
        assert result.set_cookies == ["sid=abc"]


# ── Request building ─────────────────────────────────────────────────────


class TestRequestBuilding:
    @patch("rext.executor.requests.request")
    def test_string_body_encoded(self, mock_req):
        mock_req.return_value = fake_response(text="{}", json_body={})
        execute_request("post", "http://x/api", headers={"A": "1"}, body='{"name":"é"}', timeout=2.5)
        kwargs = mock_req.call_args[1]
        assert kwargs["method"] == "POST"
        assert kwargs["data"] == '{"name":"é"}'.encode()
        assert kwargs["headers"] == {"A": "1"}
        assert kwargs["timeout"] == 2.5

    @patch("rext.executor.requests.request")
    def test_bytes_body_passed_through(self, mock_req):
        mock_req.return_value = fake_response(text="")
        execute_request("PUT", "http://x/blob", body=b"\x00\x01")
        assert mock_req.call_args[1]["data"] == b"\x00\x01"

    @patch("rext.executor.requests.request")
    def test_no_body(self, mock_req):
        mock_req.return_value = fake_response(text="")
        execute_request("GET", "http://x")
        assert mock_req.call_args[1]["data"] is None

    @patch("rext.executor.requests.request")
    def test_form_data_drops_content_type(self, mock_req):
        mock_req.return_value = fake_response(text="")
        form_data = {"data": [("title", "x")], "files": []}
        execute_request(
            "POST",
            "http://x/upload",
            headers={"content-type": "application/json", "X-Key": "k"},
            body="ignored",
            form_data=form_data,
        )
        kwargs = mock_req.call_args[1]
        assert kwargs["headers"] == {"X-Key": "k"}
        assert kwargs["data"] == [("title", "x")]
        assert kwargs["files"] == []


# ── Transport errors ─────────────────────────────────────────────────────


class TestErrors:
    @patch("rext.executor.requests.request", side_effect=requests.exceptions.Timeout())
    def test_timeout(self, mock_req):
        result = execute_request("GET", "http://x", timeout=1.0)
        assert result.error == "Request timed out after 1.0s"
        assert result.status_code == 0

    @patch(
        "rext.executor.requests.request",
        side_effect=requests.exceptions.ConnectionError("refused"),
    )
    def test_connection_error(self, mock_req):
        result = execute_request("GET", "http://x")
        assert result.error.startswith("Connection error:")
        assert result.body is None

    @patch(
        "rext.executor.requests.request",
        side_effect=requests.exceptions.InvalidURL("bad url"),
    )
    def test_other_request_error(self, mock_req):
        result = execute_request("GET", "not a url")
        assert result.error.startswith("Request failed:")
