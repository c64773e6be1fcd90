"""rext filters - response path access, assertions, and output formatting."""

from __future__ import annotations

import json
import math
import re
from typing import Any

from rext.models import (
    ASSERT_TARGETS,
    BINARY_OPERATORS,
    UNARY_OPERATORS,
    Assertion,
    AssertionResult,
    Cookie,
)


class _Missing:
    """Marker for "no value at this path" (distinct from JSON null)."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING = _Missing()

# ---------------------------------------------------------------------------
# Segment types returned by parse_path:
#   str  → dict key (case-sensitive)
#   int  → list index, from "field[n]" or a bare numeric segment
# ---------------------------------------------------------------------------

_INT_RE = re.compile(r"^\d+$")
_BRACKETS_RE = re.compile(r"^([^\[]*)((?:\[\d+\])+)$")


def parse_path(path: str) -> list[str | int]:
    """Parse an access path into segments.

      field            → key
      nested.field     → key, key
      items[0].id      → key, 0, key
      matrix[1][2]     → key, 1, 2
      items.0.id       → key, "0", key   (numeric key also indexes lists)
    """
    segments: list[str | int] = []
    for part in path.strip().split("."):
        if not part:
            continue
        m = _BRACKETS_RE.match(part)
        if m:
            if m.group(1):
                segments.append(m.group(1))
            segments.extend(int(i) for i in re.findall(r"\[(\d+)\]", m.group(2)))
        else:
            segments.append(part)
    return segments


def get_path(data: Any, path: str) -> Any:
    """Walk ``path`` through parsed JSON. Returns MISSING when any step fails."""
    current = data
    for seg in parse_path(path):
        if isinstance(current, dict):
            if not isinstance(seg, str) or seg not in current:
                return MISSING
            current = current[seg]
        elif isinstance(current, list):
            if isinstance(seg, str):
                if not _INT_RE.match(seg):
                    return MISSING
                seg = int(seg)
            if seg >= len(current):
                return MISSING
            current = current[seg]
        else:
            return MISSING
    return current


def extract_value(data: Any, path: str) -> Any:
    """Extract a value from a response body, ignoring a leading ``body.``."""
    path = path.strip()
    if path == "body":
        return data
    if path.startswith("body."):
        path = path[5:]
    return get_path(data, path)


def ci_get(d: dict[str, Any], key: str) -> Any:
    """Case-insensitive dict lookup. Returns MISSING when absent."""
    if key in d:
        return d[key]
    lower = key.lower()
    for k, v in d.items():
        if k.lower() == lower:
            return v
    return MISSING


# ---------------------------------------------------------------------------
# JavaScript-style scalar rendering and coercion
# ---------------------------------------------------------------------------


# Number() grammar: no "_" separators, no "inf"/"nan", unsigned 0x/0o/0b
_JS_DECIMAL_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_JS_RADIX_RE = re.compile(r"^0([xXoObB])([0-9a-fA-F]+)$")
_RADIX_BASES = {"x": 16, "o": 8, "b": 2}


def stringify(value: Any) -> str:
    """Render a value the way String()/JSON.stringify would in a browser."""
    if value is MISSING:
        return "undefined"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, dict | list):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def to_number(value: Any) -> float:
    """Number() coercion. NaN when there is no sensible numeric reading."""
    if value is MISSING:
        return math.nan
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        if _JS_DECIMAL_RE.match(text):
            return float(text)
        m = _JS_RADIX_RE.match(text)
        if m:
            try:
                return float(int(m.group(2), _RADIX_BASES[m.group(1).lower()]))
            except ValueError:  # digit outside the base, e.g. 0b2
                return math.nan
        if text in ("Infinity", "+Infinity"):
            return math.inf
        if text == "-Infinity":
            return -math.inf
        return math.nan
    return math.nan


def is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        return True
    if isinstance(value, str) and value.strip():
        return not math.isnan(to_number(value))
    return False


def is_empty(value: Any) -> bool:
    if value is MISSING or value is None or value == "":
        return True
    return isinstance(value, list | dict) and len(value) == 0


def serialized_size(body: Any) -> int:
    """UTF-8 byte length of the body as it would be serialized."""
    if body is None:
        return 0
    if isinstance(body, bytes):
        return len(body)
    raw = body if isinstance(body, str) else stringify(body)
    return len(raw.encode("utf-8"))


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------


def parse_set_cookies(set_cookies: list[str]) -> list[Cookie]:
    """Split raw Set-Cookie header values into name/value/attributes."""
    cookies: list[Cookie] = []
    for raw in set_cookies:
        name_val, *attrs = raw.split(";")
        eq = name_val.find("=")
        if eq > 0:
            cookies.append(
                Cookie(
                    name=name_val[:eq].strip(),
                    value=name_val[eq + 1 :].strip(),
                    attributes="; ".join(a.strip() for a in attrs),
                ),
            )
    return cookies


# ---------------------------------------------------------------------------
# Assertions
# ---------------------------------------------------------------------------

_UNARY_RE = re.compile(r"^(\S+)\s+(" + "|".join(re.escape(op) for op in UNARY_OPERATORS) + r")$")
_BINARY_RE = re.compile(
    r"^(\S+)\s+(" + "|".join(re.escape(op) for op in BINARY_OPERATORS) + r")\s+(.+)$"
)


def _split_target(spec: str) -> tuple[str, str | None]:
    target, _, path = spec.partition(".")
    return target, path or None


def parse_assertion(expr: str) -> Assertion | None:
    """Parse 'status == 200', 'body.items isArray', 'header.Content-Type contains json'.

    Unary operators are tried first, then binary. Returns None when neither
    grammar matches or the target is unknown.
    """
    expr = expr.strip()
    if expr.startswith("@assert"):
        expr = expr[len("@assert") :].strip()

    m = _UNARY_RE.match(expr)
    if m:
        target, path = _split_target(m.group(1))
        operator, expected = m.group(2), None
    else:
        m = _BINARY_RE.match(expr)
        if not m:
            return None
        target, path = _split_target(m.group(1))
        operator, expected = m.group(2), m.group(3).strip()

    if target not in ASSERT_TARGETS:
        return None
    return Assertion(target=target, operator=operator, path=path, expected=expected)


def resolve_actual(assertion: Assertion, context: dict[str, Any]) -> Any:
    """Pick the actual value an assertion talks about.

    context keys: status, body, headers, duration, size, cookies.
    """
    target = assertion.target
    path = assertion.path
    if target == "status":
        return context.get("status")
    if target == "body":
        body = context.get("body")
        return get_path(body, path) if path else body
    if target == "header":
        headers = context.get("headers") or {}
        return ci_get(headers, path) if path else headers
    if target == "duration":
        return context.get("duration")
    if target == "size":
        return context.get("size")
    if target == "cookie":
        if not path:
            return MISSING
        for cookie in context.get("cookies") or []:
            if cookie.name == path:
                return cookie.value
        return MISSING
    return MISSING


def compare(operator: str, actual: Any, expected: str | None) -> bool:
    actual_str = stringify(actual)
    expected_str = expected or ""

    if operator == "==":
        return actual_str == expected_str
    if operator == "!=":
        return actual_str != expected_str
    if operator in (">", "<", ">=", "<="):
        a, e = to_number(actual), to_number(expected_str)
        if math.isnan(a) or math.isnan(e):
            return False
        if operator == ">":
            return a > e
        if operator == "<":
            return a < e
        if operator == ">=":
            return a >= e
        return a <= e
    if operator == "contains":
        return expected_str in actual_str
    if operator == "exists":
        return actual is not MISSING and actual is not None
    if operator == "!exists":
        return actual is MISSING or actual is None
    if operator == "isArray":
        return isinstance(actual, list)
    if operator == "isNumber":
        return is_number(actual)
    if operator == "isNull":
        return actual is None
    if operator == "isUndefined":
        return actual is MISSING
    if operator == "isEmpty":
        return is_empty(actual)
    return False


def evaluate_assertion(assertion: Assertion, context: dict[str, Any]) -> AssertionResult:
    actual = resolve_actual(assertion, context)
    return AssertionResult(
        label=assertion.label,
        passed=compare(assertion.operator, actual, assertion.expected),
    )


def evaluate_assertions(
    assertions: list[Assertion],
    context: dict[str, Any],
) -> list[AssertionResult]:
    """Evaluate every assertion; a failure never stops the rest."""
    return [evaluate_assertion(a, context) for a in assertions]


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def format_output(result, verbose: bool = False, raw: bool = False) -> str:
    """Format an ExecutionResult for CLI output."""
    if raw:
        body = result.body
        if isinstance(body, dict | list):
            return json.dumps(body, indent=2)
        return str(body) if body is not None else ""

    lines: list[str] = []

    for pre in result.pre_results:
        lines.append(f"[pre: {pre.name or pre.url}] STATUS: {pre.status} ({pre.duration_ms}ms)")

    if result.error:
        lines.append(f"ERROR: {result.error}")
        lines.append(f"ATTEMPTS: {result.attempts}/{result.max_attempts}")
        return "\n".join(lines)

    lines.append(f"STATUS: {result.status}")
    lines.append(f"TIME: {result.duration_ms}ms")
    if result.max_attempts > 1:
        lines.append(f"ATTEMPTS: {result.attempts}/{result.max_attempts}")

    if verbose:
        lines.append(f"SIZE: {result.size}B")
        if result.headers:
            lines.append("HEADERS:")
            for key, value in result.headers.items():
                lines.append(f"  {key}: {value}")

    if result.assertions:
        lines.append("ASSERTIONS:")
        for a in result.assertions:
            mark = "PASS" if a.passed else "FAIL"
            lines.append(f"  [{mark}] {a.label}")

    body = result.body
    if body is not None:
        lines.append("BODY:")
        if isinstance(body, dict | list):
            lines.append(json.dumps(body, indent=2))
        else:
            lines.append(str(body))

    return "\n".join(lines)
