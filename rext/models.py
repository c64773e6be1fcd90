"""rext models - parsed requests, config blocks, and execution results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SCOPES = ("session", "collection", "env", "global")

ASSERT_TARGETS = ("status", "body", "header", "duration", "size", "cookie")

UNARY_OPERATORS = (
    "exists",
    "!exists",
    "isArray",
    "isNumber",
    "isNull",
    "isUndefined",
    "isEmpty",
)
BINARY_OPERATORS = ("==", "!=", ">=", "<=", ">", "<", "contains")


@dataclass
class RetryPolicy:
    count: int
    delay_ms: int | None = None  # None -> runner default


@dataclass
class Capture:
    scope: str
    variable: str
    query: str


@dataclass
class Assertion:
    target: str
    operator: str
    path: str | None = None
    expected: str | None = None

    @property
    def label(self) -> str:
        label = self.target
        if self.path:
            label += f".{self.path}"
        label += f" {self.operator}"
        if self.expected is not None:
            label += f" {self.expected}"
        return label


@dataclass
class QueryParam:
    key: str
    value: str


@dataclass
class FormField:
    """One multipart field. ``file`` set means the value is read from disk."""

    key: str
    value: str = ""
    file: str | None = None
    mime: str | None = None


@dataclass
class ConfigBlock:
    collection: str | None = None
    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: int | None = None
    retries: int | None = None
    assertions: list[Assertion] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0


@dataclass
class RequestDefinition:
    """A single request block of a .rext file.

    Body sources may coexist; at execution time multipart ``form`` wins over
    ``body_file``, which wins over the inline ``body``.
    """

    method: str = "GET"
    url: str = ""
    id: str | None = None
    has_missing_id: bool = False
    name: str | None = None
    collection: str | None = None
    group: str | None = None
    tags: list[str] = field(default_factory=list)
    deprecated: bool = False
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None
    body_file: str | None = None
    form: list[FormField] = field(default_factory=list)
    query: list[QueryParam] = field(default_factory=list)
    captures: list[Capture] = field(default_factory=list)
    retry: RetryPolicy | None = None
    timeout: int | None = None  # milliseconds
    assertions: list[Assertion] = field(default_factory=list)
    pre_request_ids: list[str] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0
    file_path: str | None = None
    resolved_config: ConfigBlock | None = None

    @property
    def display_name(self) -> str:
        return self.name or f"{self.method} {self.url}"


@dataclass
class ParseResult:
    requests: list[RequestDefinition] = field(default_factory=list)
    configs: list[ConfigBlock] = field(default_factory=list)
    collection: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass
class ResolvedRequest:
    """Interpolated, ready-to-send view of a request. No file I/O involved."""

    method: str
    url: str
    headers: dict[str, str]
    body: str | None = None
    body_file: str | None = None
    form: list[FormField] = field(default_factory=list)


@dataclass
class AssertionResult:
    label: str
    passed: bool


@dataclass
class Cookie:
    name: str
    value: str
    attributes: str = ""


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one ``Runner.run`` call, including nested pre-requests."""

    method: str
    url: str
    name: str | None = None
    status: int = 0
    duration_ms: int = 0
    attempts: int = 1
    max_attempts: int = 1
    body: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    request_headers: dict[str, str] = field(default_factory=dict)
    request_body: str | None = None
    assertions: list[AssertionResult] = field(default_factory=list)
    size: int = 0
    cookies: list[Cookie] = field(default_factory=list)
    pre_results: list[ExecutionResult] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def passed(self) -> bool:
        return self.ok and all(a.passed for a in self.assertions)
