"""rext executor - a single HTTP dispatch."""

import json
import logging
import time
from typing import Any

import requests

logger = logging.getLogger(__name__)


class RequestResult:
    """Result of one HTTP call."""

    def __init__(self):
        self.status_code: int = 0
        self.headers: dict[str, str] = {}
        self.body: Any = None  # parsed JSON or raw text
        self.elapsed_ms: float = 0
        self.error: str | None = None
        self.raw_text: str = ""
        self.set_cookies: list[str] = []


def _set_cookie_values(resp) -> list[str]:
    """Every Set-Cookie header, unmerged when the transport exposes them."""
    raw = getattr(resp, "raw", None)
    raw_headers = getattr(raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return list(raw_headers.getlist("Set-Cookie"))
    for key, value in resp.headers.items():
        if key.lower() == "set-cookie":
            return [value]
    return []


def execute_request(
    method: str,
    url: str,
    headers: dict[str, str] | None = None,
    body: str | bytes | None = None,
    timeout: float | None = None,
    form_data: dict | None = None,
) -> RequestResult:
    """Execute an HTTP request and return structured result.

    - Attempts to parse response as JSON
    - Falls back to raw text
    - Captures timing
    - Never raises - transport failures come back with the error field set

    ``timeout`` is in seconds; None means no explicit timeout. When form_data
    is provided (dict with 'data' and 'files' lists of pairs), a
    multipart/form-data request is sent instead of a raw body.
    """
    result = RequestResult()

    try:
        kwargs: dict[str, Any] = {
            "method": method.upper(),
            "url": url,
            "timeout": timeout,
            "allow_redirects": True,
        }

        if form_data:
            # Let requests set the multipart boundary
            req_headers = {
                k: v for k, v in (headers or {}).items() if k.lower() != "content-type"
            }
            kwargs["headers"] = req_headers
            kwargs["data"] = form_data.get("data", [])
            kwargs["files"] = form_data.get("files", [])
        else:
            kwargs["headers"] = headers
            if isinstance(body, str):
                kwargs["data"] = body.encode("utf-8")
            else:
                kwargs["data"] = body or None

        logger.debug("%s %s", kwargs["method"], url)
        start = time.monotonic()
        resp = requests.request(**kwargs)
        result.elapsed_ms = (time.monotonic() - start) * 1000

        result.status_code = resp.status_code
        result.headers = dict(resp.headers)
        result.raw_text = resp.text
        result.set_cookies = _set_cookie_values(resp)

        try:
            result.body = resp.json()
        except (json.JSONDecodeError, ValueError):
            result.body = resp.text

    except requests.exceptions.Timeout:
        result.error = f"Request timed out after {timeout}s"
    except requests.exceptions.ConnectionError as e:
        result.error = f"Connection error: {e}"
    except requests.exceptions.RequestException as e:
        result.error = f"Request failed: {e}"
    except OSError as e:
        result.error = f"Request failed: {e}"

    if result.error:
        logger.debug("%s %s failed: %s", method, url, result.error)
    return result
