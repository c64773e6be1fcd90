"""rext parser - turn .rext request files into request and config definitions.

The format is line oriented:

    /**
     * @collection users
     * @tags smoke, api
     */

    @config
    baseUrl: http://localhost:3000
    headers:
      Accept: application/json
    assert:
      status == 200

    ###
    @id a1B2c3
    @name Create user
    @capture env.userId = body.id
    @assert body.id exists
    POST /users
    Content-Type: application/json

    {"name": "{{$randomString:8}}"}

Parsing never raises; lines that do not make sense are dropped.
"""

from __future__ import annotations

import enum
import random
import re
import string
from collections.abc import Callable
from pathlib import Path

from rext.filters import parse_assertion
from rext.models import (
    SCOPES,
    Capture,
    ConfigBlock,
    FormField,
    ParseResult,
    QueryParam,
    RequestDefinition,
    RetryPolicy,
)

BLOCK_SEPARATOR = "###"
CONFIG_MARKER = "@config"
ID_LENGTH = 6

METHOD_RE = re.compile(r"^(GET|POST|PUT|DELETE|PATCH|HEAD|OPTIONS)\s+(.+)$", re.IGNORECASE)
_DIRECTIVE_RE = re.compile(r"^@([A-Za-z][\w-]*)(?:\s+(.*))?$")
_ID_RE = re.compile(r"^[A-Za-z0-9]{6}$")
_RETRY_RE = re.compile(r"^(\d+)(?:\s+delay\s+(\d+))?")
_TIMEOUT_RE = re.compile(r"^(\d+)")
_HEADER_DIRECTIVE_RE = re.compile(r"^([^:]+):\s*(.+)$")
_HEADER_KEY_RE = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")
_SCOPED_CAPTURE_RE = re.compile(r"^(" + "|".join(SCOPES) + r")\.([\w.]+)\s*=\s*(.+)$")
_CAPTURE_RE = re.compile(r"^(\w+)\s*=\s*(.+)$")
_PAIR_RE = re.compile(r"^([^=\s]+)\s*=\s*(.*)$")
_DOC_PREFIX_RE = re.compile(r"^\*\s*")
_LINE_BREAK_RE = re.compile(r"\r?\n")


class ParseMode(enum.Enum):
    DIRECTIVE = "directive"
    BODY = "body"
    DOC = "doc"


class _OpenRequest:
    """A request under construction plus its pending body lines."""

    def __init__(self, start_line: int):
        self.request = RequestDefinition(start_line=start_line, end_line=start_line)
        self.body_lines: list[str] = []

    def flush_body(self) -> None:
        text = "\n".join(self.body_lines).strip()
        if text:
            self.request.body = text
        self.body_lines = []

    def close(self, end_line: int) -> RequestDefinition | None:
        self.flush_body()
        self.request.end_line = end_line
        return self.request if self.request.url else None


# ── Directive handlers ───────────────────────────────────────────────────


def _split_tags(value: str) -> list[str]:
    return [t.strip() for t in value.split(",") if t.strip()]


def _dedupe(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _on_collection(req: RequestDefinition, arg: str) -> None:
    if arg:
        req.collection = arg


def _on_id(req: RequestDefinition, arg: str) -> None:
    if _ID_RE.match(arg):
        req.id = arg


def _on_name(req: RequestDefinition, arg: str) -> None:
    if arg:
        req.name = arg


def _on_group(req: RequestDefinition, arg: str) -> None:
    if arg:
        req.group = arg


def _on_tags(req: RequestDefinition, arg: str) -> None:
    tags = _split_tags(arg)
    if tags:
        req.tags = _dedupe(tags)


def _on_deprecated(req: RequestDefinition, arg: str) -> None:
    req.deprecated = True


def _on_pre(req: RequestDefinition, arg: str) -> None:
    if _ID_RE.match(arg):
        req.pre_request_ids.append(arg)


def _on_retry(req: RequestDefinition, arg: str) -> None:
    m = _RETRY_RE.match(arg)
    if m:
        delay = int(m.group(2)) if m.group(2) else None
        req.retry = RetryPolicy(count=int(m.group(1)), delay_ms=delay)


def _on_timeout(req: RequestDefinition, arg: str) -> None:
    m = _TIMEOUT_RE.match(arg)
    if m:
        req.timeout = int(m.group(1))


def _on_header(req: RequestDefinition, arg: str) -> None:
    m = _HEADER_DIRECTIVE_RE.match(arg)
    if m:
        req.headers[m.group(1).strip()] = m.group(2).strip()


def _on_capture(req: RequestDefinition, arg: str) -> None:
    m = _SCOPED_CAPTURE_RE.match(arg)
    if m:
        req.captures.append(Capture(scope=m.group(1), variable=m.group(2), query=m.group(3).strip()))
        return
    m = _CAPTURE_RE.match(arg)
    if m:
        req.captures.append(Capture(scope="session", variable=m.group(1), query=m.group(2).strip()))


def _on_assert(req: RequestDefinition, arg: str) -> None:
    assertion = parse_assertion(arg)
    if assertion:
        req.assertions.append(assertion)


def _on_query(req: RequestDefinition, arg: str) -> None:
    m = _PAIR_RE.match(arg)
    if m:
        req.query.append(QueryParam(key=m.group(1), value=m.group(2).strip()))


def _on_form(req: RequestDefinition, arg: str) -> None:
    """``@form key = value`` or ``@form key = @path/to/file[;type=mime]``."""
    m = _PAIR_RE.match(arg)
    if not m:
        return
    key, value = m.group(1), m.group(2).strip()
    if value.startswith("@") and len(value) > 1:
        path, _, mime = value[1:].partition(";type=")
        req.form.append(FormField(key=key, file=path.strip(), mime=mime.strip() or None))
    else:
        req.form.append(FormField(key=key, value=value))


def _on_file(req: RequestDefinition, arg: str) -> None:
    if arg:
        req.body_file = arg


_DIRECTIVES: dict[str, Callable[[RequestDefinition, str], None]] = {
    "collection": _on_collection,
    "id": _on_id,
    "group": _on_group,
    "tags": _on_tags,
    "pre": _on_pre,
    "deprecated": _on_deprecated,
    "name": _on_name,
    "retry": _on_retry,
    "timeout": _on_timeout,
    "header": _on_header,
    "capture": _on_capture,
    "assert": _on_assert,
    "query": _on_query,
    "form": _on_form,
    "file": _on_file,
}


def _apply_line(req: RequestDefinition, trimmed: str) -> bool:
    """Apply one non-body line to ``req``. False means the line was not used."""
    if not trimmed:
        return False
    if trimmed.startswith(("#", "//")):
        return True

    m = _DIRECTIVE_RE.match(trimmed)
    if m:
        handler = _DIRECTIVES.get(m.group(1))
        if handler:
            handler(req, (m.group(2) or "").strip())
        return True

    m = METHOD_RE.match(trimmed)
    if m:
        req.method = m.group(1).upper()
        req.url = m.group(2).strip()
        return True

    if ":" in trimmed and not trimmed.startswith("http"):
        key, _, value = trimmed.partition(":")
        key = key.strip()
        if _HEADER_KEY_RE.match(key):
            req.headers[key] = value.strip()
            return True
    return False


# ── Config blocks ────────────────────────────────────────────────────────


def _to_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def _parse_config_block(lines: list[str], start: int) -> tuple[ConfigBlock, int]:
    """Consume an @config block starting at ``lines[start]``.

    Returns the block and the index of the first line that is not part of it.
    """
    config = ConfigBlock(start_line=start, end_line=start)
    section: str | None = None
    i = start + 1

    while i < len(lines):
        line = lines[i]
        trimmed = line.strip()

        if not trimmed:
            i += 1
            continue

        nested = line.startswith(("  ", "\t")) and not trimmed.startswith(BLOCK_SEPARATOR)
        if section and nested:
            if section == "headers":
                key, sep, value = trimmed.partition(":")
                if sep and key.strip():
                    config.headers[key.strip()] = value.strip()
            else:
                assertion = parse_assertion(trimmed)
                if assertion:
                    config.assertions.append(assertion)
            config.end_line = i
            i += 1
            continue

        if trimmed.startswith(BLOCK_SEPARATOR) or trimmed.startswith("@") or METHOD_RE.match(trimmed):
            break

        section = None
        key, _, value = trimmed.partition(":")
        key, value = key.strip(), value.strip()
        if key == "headers" and not value:
            section = "headers"
        elif key == "assert" and not value:
            section = "assert"
        elif key == "baseUrl":
            config.base_url = value or None
        elif key == "collection":
            config.collection = value or None
        elif key == "timeout":
            config.timeout = _to_int(value)
        elif key == "retries":
            config.retries = _to_int(value)
        config.end_line = i
        i += 1

    return config, i


def select_config(request: RequestDefinition, configs: list[ConfigBlock]) -> ConfigBlock | None:
    """Config for a request: its collection's block, else the file-level one."""
    if request.collection:
        for cfg in configs:
            if cfg.collection == request.collection:
                return cfg
    for cfg in configs:
        if not cfg.collection:
            return cfg
    return None


def resolve_config(request: RequestDefinition, configs: list[ConfigBlock]) -> RequestDefinition:
    """Merge the matching config block's defaults into ``request`` in place."""
    cfg = select_config(request, configs)
    if cfg is None:
        return request

    request.resolved_config = cfg
    if cfg.base_url and request.url.startswith("/"):
        request.url = cfg.base_url.rstrip("/") + request.url
    request.headers = {**cfg.headers, **request.headers}
    if cfg.timeout and not request.timeout:
        request.timeout = cfg.timeout
    if cfg.retries and request.retry is None:
        request.retry = RetryPolicy(count=cfg.retries)
    if cfg.assertions:
        request.assertions = [*cfg.assertions, *request.assertions]
    return request


# ── Parsing ──────────────────────────────────────────────────────────────


def _apply_doc_line(text: str, meta: dict) -> None:
    clean = _DOC_PREFIX_RE.sub("", text.strip())
    m = _DIRECTIVE_RE.match(clean)
    if not m or not m.group(2):
        return
    if m.group(1) == "collection":
        meta["collection"] = m.group(2).strip()
    elif m.group(1) == "tags":
        meta["tags"] = _split_tags(m.group(2))


def parse(text: str) -> ParseResult:
    """Parse .rext source into requests and config blocks.

    Only requests with a URL are returned. File-level collection/tags from a
    /** ... */ block are merged in and config defaults are applied.
    """
    # Only \n and \r\n break lines; other separators belong to the body
    lines = _LINE_BREAK_RE.split(text)
    requests: list[RequestDefinition] = []
    configs: list[ConfigBlock] = []
    meta: dict = {"collection": None, "tags": []}

    current: _OpenRequest | None = None
    mode = ParseMode.DIRECTIVE

    def _commit(end_line: int) -> None:
        if current is not None:
            closed = current.close(end_line)
            if closed is not None:
                requests.append(closed)

    i = 0
    while i < len(lines):
        line = lines[i]
        trimmed = line.strip()

        if mode is ParseMode.DOC:
            if trimmed.endswith("*/"):
                _apply_doc_line(trimmed[:-2], meta)
                mode = ParseMode.DIRECTIVE
            else:
                _apply_doc_line(trimmed, meta)
            i += 1
            continue

        if trimmed == CONFIG_MARKER:
            _commit(i - 1)
            current = None
            mode = ParseMode.DIRECTIVE
            config, i = _parse_config_block(lines, i)
            configs.append(config)
            continue

        if mode is not ParseMode.BODY and trimmed.startswith("/**"):
            rest = trimmed[3:]
            if rest.endswith("*/"):
                _apply_doc_line(rest[:-2], meta)
            else:
                _apply_doc_line(rest, meta)
                mode = ParseMode.DOC
            i += 1
            continue

        if trimmed.startswith(BLOCK_SEPARATOR) or (current is None and trimmed):
            _commit(i - 1)
            current = _OpenRequest(i)
            mode = ParseMode.DIRECTIVE
            if trimmed.startswith(BLOCK_SEPARATOR):
                i += 1
                continue

        if current is None:
            i += 1
            continue

        if mode is ParseMode.BODY:
            if not trimmed.startswith("@"):
                current.body_lines.append(line)
                i += 1
                continue
            # A directive ends the body and is handled below
            current.flush_body()
            mode = ParseMode.DIRECTIVE

        used = _apply_line(current.request, trimmed)
        if not used and not trimmed and current.request.url:
            mode = ParseMode.BODY
        i += 1

    _commit(len(lines) - 1)

    file_collection = meta["collection"]
    file_tags = meta["tags"]
    for req in requests:
        if file_collection and not req.collection:
            req.collection = file_collection
        if file_tags:
            req.tags = _dedupe([*file_tags, *req.tags])
        if not req.id:
            req.has_missing_id = True

    for req in requests:
        resolve_config(req, configs)

    return ParseResult(
        requests=requests,
        configs=configs,
        collection=file_collection,
        tags=list(file_tags),
    )


def parse_file(path: str | Path) -> ParseResult:
    """Read and parse a .rext file; requests remember where they came from."""
    path = Path(path)
    result = parse(path.read_text(encoding="utf-8"))
    for req in result.requests:
        req.file_path = str(path.resolve())
    return result


# ── Request-set checks ───────────────────────────────────────────────────


def find_request(requests: list[RequestDefinition], request_id: str) -> RequestDefinition | None:
    for req in requests:
        if req.id == request_id:
            return req
    return None


def find_missing_pre_requests(
    requests: list[RequestDefinition],
) -> list[tuple[RequestDefinition, str]]:
    """(request, id) pairs for every @pre id no request declares."""
    known = {r.id for r in requests if r.id}
    return [(req, pre) for req in requests for pre in req.pre_request_ids if pre not in known]


def find_duplicate_ids(requests: list[RequestDefinition]) -> dict[str, list[RequestDefinition]]:
    seen: dict[str, list[RequestDefinition]] = {}
    for req in requests:
        if req.id:
            seen.setdefault(req.id, []).append(req)
    return {rid: reqs for rid, reqs in seen.items() if len(reqs) > 1}


def generate_id(existing: set[str] | None = None) -> str:
    """Mint a fresh 6-character alphanumeric request id."""
    alphabet = string.ascii_letters + string.digits
    while True:
        candidate = "".join(random.choice(alphabet) for _ in range(ID_LENGTH))
        if not existing or candidate not in existing:
            return candidate
