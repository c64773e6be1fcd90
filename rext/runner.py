"""rext runner - execute a request with its pre-requests, retries, captures and assertions.

    runner = Runner(store)
    result = runner.run(request, all_requests)

Pre-requests run first, strictly one after another, so a later request can
use what an earlier one captured. Each id runs at most once per top-level
run; that also breaks dependency cycles. Nothing here raises on transport or
server errors: those end up in the returned ExecutionResult.
"""

from __future__ import annotations

import contextlib
import logging
import mimetypes
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import quote

from rext import executor
from rext.filters import (
    MISSING,
    evaluate_assertions,
    extract_value,
    parse_set_cookies,
    serialized_size,
)
from rext.models import ExecutionResult, FormField, RequestDefinition, ResolvedRequest
from rext.parser import find_request
from rext.variables import VariableStore

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY_MS = 500

TEXT_MIME_TYPES = {
    "application/json",
    "application/xml",
    "application/javascript",
    "text/javascript",
}

_QUOTED_LITERAL_RE = re.compile(r"""^["'](.*)["']$""")
_NUMBER_LITERAL_RE = re.compile(r"^\d+(\.\d+)?$")


# ── Materialization helpers ──────────────────────────────────────────────


def encode_component(value: str) -> str:
    """Percent-encode like encodeURIComponent."""
    return quote(value, safe="-_.!~*'()")


def build_url(request: RequestDefinition, store: VariableStore) -> str:
    url = store.replace_in_string(request.url)
    if request.query:
        params = "&".join(
            f"{encode_component(store.replace_in_string(q.key))}"
            f"={encode_component(store.replace_in_string(q.value))}"
            for q in request.query
        )
        url += ("&" if "?" in url else "?") + params
    return url


def resolve_request(request: RequestDefinition, store: VariableStore) -> ResolvedRequest:
    """Interpolated view of ``request`` without touching the network or disk."""
    return ResolvedRequest(
        method=request.method,
        url=build_url(request, store),
        headers={k: store.replace_in_string(v) for k, v in request.headers.items()},
        body=store.replace_in_string(request.body) if request.body else None,
        body_file=store.replace_in_string(request.body_file) if request.body_file else None,
        form=[
            FormField(
                key=f.key,
                value=store.replace_in_string(f.value),
                file=store.replace_in_string(f.file) if f.file else None,
                mime=f.mime,
            )
            for f in request.form
        ],
    )


def resolve_file_path(request: RequestDefinition, path: str) -> Path:
    """Relative paths are taken from the directory of the defining file."""
    p = Path(path)
    if not p.is_absolute() and request.file_path:
        p = Path(request.file_path).parent / p
    return p


def guess_mime(path: Path) -> str:
    return mimetypes.guess_type(str(path))[0] or "application/octet-stream"


def is_text_mime(mime: str) -> bool:
    return mime.startswith("text/") or mime in TEXT_MIME_TYPES


@dataclass
class PreparedRequest:
    """A request after interpolation; reused unchanged across retries."""

    method: str
    url: str
    headers: dict[str, str]
    body: str | bytes | None = None
    form_data: dict | None = None
    request_body: str | None = None
    handles: list[Any] = field(default_factory=list)

    def rewind(self) -> None:
        for handle in self.handles:
            handle.seek(0)


# ── Captures ─────────────────────────────────────────────────────────────


def capture_value(query: str, response: executor.RequestResult) -> Any:
    """Value a capture query yields for ``response``, or MISSING.

    "x" / 'x' / 42 / true / false are literals; ``status`` is the status code;
    ``header.Name`` is a case-sensitive header lookup; anything else is a
    (optionally ``body.``-prefixed) path into the parsed body.
    """
    q = query.strip()
    m = _QUOTED_LITERAL_RE.match(q)
    if m:
        return m.group(1)
    if _NUMBER_LITERAL_RE.match(q) or q in ("true", "false"):
        return q
    if q == "status":
        return response.status_code
    if q.startswith("header."):
        name = q[len("header.") :]
        return response.headers[name] if name in response.headers else MISSING
    if response.body is None:
        return MISSING
    return extract_value(response.body, q)


# ── Runner ───────────────────────────────────────────────────────────────


class Runner:
    def __init__(
        self,
        store: VariableStore,
        default_retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        default_timeout_ms: int | None = None,
        sleep=time.sleep,
    ):
        self.store = store
        self.default_retry_delay_ms = default_retry_delay_ms
        self.default_timeout_ms = default_timeout_ms
        self.sleep = sleep

    def resolve(self, request: RequestDefinition) -> ResolvedRequest:
        return resolve_request(request, self.store)

    def run_all(self, requests: list[RequestDefinition]) -> list[ExecutionResult]:
        """Run every request in order, each as its own top-level run."""
        return [self.run(req, requests) for req in requests]

    def run(
        self,
        request: RequestDefinition,
        all_requests: list[RequestDefinition] | None = None,
        visited: set[str] | None = None,
    ) -> ExecutionResult:
        start = time.monotonic()
        pre_results = self._run_pre_requests(request, all_requests, visited)

        with contextlib.ExitStack() as stack:
            prepared = self._prepare(request, stack)
            return self._dispatch(request, prepared, pre_results, start)

    # --- Steps ---

    def _run_pre_requests(
        self,
        request: RequestDefinition,
        all_requests: list[RequestDefinition] | None,
        visited: set[str] | None,
    ) -> list[ExecutionResult]:
        if not request.pre_request_ids or not all_requests:
            return []

        # Shared down the whole call tree of one top-level run
        if visited is None:
            visited = set()
        if request.id:
            visited.add(request.id)

        results: list[ExecutionResult] = []
        for pre_id in request.pre_request_ids:
            if pre_id in visited:
                logger.debug("Skipping pre-request %s (already run)", pre_id)
                continue
            pre = find_request(all_requests, pre_id)
            if pre is None:
                logger.debug("Skipping unknown pre-request %s", pre_id)
                continue
            visited.add(pre_id)
            results.append(self.run(pre, all_requests, visited))
        return results

    def _prepare(self, request: RequestDefinition, stack: contextlib.ExitStack) -> PreparedRequest:
        replace = self.store.replace_in_string
        prepared = PreparedRequest(
            method=request.method,
            url=build_url(request, self.store),
            headers={k: replace(v) for k, v in request.headers.items()},
        )

        if request.form:
            files: list[tuple[str, tuple[Any, ...]]] = []
            for f in request.form:
                if not f.file:
                    # (None, value) is a filename-less part; text-only forms stay multipart
                    files.append((f.key, (None, replace(f.value))))
                    continue
                path = resolve_file_path(request, replace(f.file))
                if not path.is_file():
                    logger.debug("Skipping form file %s (not found)", path)
                    continue
                handle = stack.enter_context(open(path, "rb"))
                prepared.handles.append(handle)
                files.append((f.key, (path.name, handle, f.mime or guess_mime(path))))
            prepared.form_data = {"data": [], "files": files}
            prepared.request_body = "[multipart]"
        elif request.body_file:
            path = resolve_file_path(request, replace(request.body_file))
            if path.is_file():
                if is_text_mime(guess_mime(path)):
                    prepared.body = replace(path.read_text(encoding="utf-8"))
                    prepared.request_body = prepared.body
                else:
                    prepared.body = path.read_bytes()
                    prepared.request_body = "[binary]"
            else:
                logger.debug("Body file %s not found, sending no body", path)
        elif request.body:
            prepared.body = replace(request.body)
            prepared.request_body = prepared.body

        return prepared

    def _dispatch(
        self,
        request: RequestDefinition,
        prepared: PreparedRequest,
        pre_results: list[ExecutionResult],
        start: float,
    ) -> ExecutionResult:
        retry = request.retry
        max_attempts = retry.count + 1 if retry else 1
        delay_ms = self.default_retry_delay_ms
        if retry and retry.delay_ms is not None:
            delay_ms = retry.delay_ms
        timeout_ms = request.timeout or self.default_timeout_ms
        timeout = timeout_ms / 1000 if timeout_ms else None

        attempt = 1
        while True:
            prepared.rewind()
            response = executor.execute_request(
                method=prepared.method,
                url=prepared.url,
                headers=dict(prepared.headers),
                body=prepared.body,
                timeout=timeout,
                form_data=prepared.form_data,
            )
            failed = response.error is not None or response.status_code >= 500
            if not failed or attempt >= max_attempts:
                break
            logger.debug(
                "Attempt %d/%d of %s %s failed (%s), retrying in %dms",
                attempt,
                max_attempts,
                prepared.method,
                prepared.url,
                response.error or response.status_code,
                delay_ms,
            )
            self.sleep(delay_ms / 1000)
            attempt += 1

        common = {
            "name": request.name,
            "method": prepared.method,
            "url": prepared.url,
            "attempts": attempt,
            "max_attempts": max_attempts,
            "request_headers": prepared.headers,
            "request_body": prepared.request_body,
            "pre_results": pre_results,
        }

        if response.error is not None:
            return ExecutionResult(
                status=0,
                duration_ms=_elapsed_ms(start),
                body=response.error,
                error=response.error,
                **common,
            )

        self._capture(request, response)

        duration_ms = _elapsed_ms(start)
        size = serialized_size(response.body)
        cookies = parse_set_cookies(response.set_cookies)
        assertions = evaluate_assertions(
            request.assertions,
            {
                "status": response.status_code,
                "body": response.body,
                "headers": response.headers,
                "duration": duration_ms,
                "size": size,
                "cookies": cookies,
            },
        )

        return ExecutionResult(
            status=response.status_code,
            duration_ms=duration_ms,
            body=response.body,
            headers=response.headers,
            assertions=assertions,
            size=size,
            cookies=cookies,
            **common,
        )

    def _capture(self, request: RequestDefinition, response: executor.RequestResult) -> None:
        for cap in request.captures:
            value = capture_value(cap.query, response)
            if value is MISSING:
                logger.debug("Capture %s = %s matched nothing", cap.variable, cap.query)
                continue
            self.store.set_scoped(cap.scope, cap.variable, value)
            if cap.scope == "env":
                self.store.persist_env(cap.variable, value)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
