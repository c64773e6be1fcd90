"""rext dynamic variables - generators behind {{$name}} and {{$name:args}}.

Every generator is called fresh for each occurrence; nothing is cached.
Arguments arrive as the colon-separated list that follows the name, e.g.
``$randomInt:1:100`` -> ``["1", "100"]``.
"""

from __future__ import annotations

import contextlib
import datetime
import random
import re
import string
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

MONTH_ABBR = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
MONTH_FULL = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

_DATE_TOKEN_RE = re.compile(r"YYYY|MMMM|MMM|MM|DD|HH|mm|ss|SSS")
_OFFSET_RE = re.compile(r"^[+-]\d+$")

ALNUM = string.ascii_uppercase + string.ascii_lowercase + string.digits
HEX = "0123456789abcdef"


@dataclass(frozen=True)
class DynamicVar:
    generate: Callable[[list[str] | None], str]
    description: str
    example: str
    param_snippet: str | None = None

    @property
    def has_params(self) -> bool:
        return self.param_snippet is not None


# ── Helpers ──────────────────────────────────────────────────────────────


def format_date(date: datetime.datetime, fmt: str) -> str:
    """Render ``date`` using YYYY/MMMM/MMM/MM/DD/HH/mm/ss/SSS tokens."""

    def _token(m: re.Match) -> str:
        tok = m.group(0)
        if tok == "YYYY":
            return str(date.year)
        if tok == "MMMM":
            return MONTH_FULL[date.month - 1]
        if tok == "MMM":
            return MONTH_ABBR[date.month - 1]
        if tok == "MM":
            return f"{date.month:02d}"
        if tok == "DD":
            return f"{date.day:02d}"
        if tok == "HH":
            return f"{date.hour:02d}"
        if tok == "mm":
            return f"{date.minute:02d}"
        if tok == "ss":
            return f"{date.second:02d}"
        return f"{date.microsecond // 1000:03d}"

    return _DATE_TOKEN_RE.sub(_token, fmt)


def random_chars(alphabet: str, length: int) -> str:
    return "".join(random.choice(alphabet) for _ in range(max(length, 0)))


def uuid_v1() -> str:
    """Timestamp-seeded UUID in v1 layout (millisecond clock + random tail)."""
    time_hex = f"{int(time.time() * 1000):012x}"
    return (
        f"{time_hex[:8]}-{time_hex[8:12]}-1{random_chars(HEX, 3)}"
        f"-{random_chars(HEX, 4)}-{random_chars(HEX, 12)}"
    )


def parse_enum_values(raw: str) -> list[str]:
    """Split a comma list, keeping commas inside double quotes.

    '"hello, world","bye",plain' -> ['hello, world', 'bye', 'plain']
    """
    values: list[str] = []
    current = ""
    in_quotes = False
    for ch in raw:
        if ch == '"':
            in_quotes = not in_quotes
            continue
        if ch == "," and not in_quotes:
            values.append(current.strip())
            current = ""
            continue
        current += ch
    if current:
        values.append(current.strip())
    return [v for v in values if v]


def _bounds(params: list[str] | None, cast, default_min, default_max):
    """Read (min, max, rest) from either ``a:b[:c]`` or ``a,b[,c]`` forms."""
    if params and len(params) >= 2:
        parts = params
    elif params and "," in params[0]:
        parts = params[0].split(",")
    elif params and params[0]:
        return default_min, cast(params[0]), []
    else:
        return default_min, default_max, []
    return cast(parts[0]), cast(parts[1]), parts[2:]


# ── Generators ───────────────────────────────────────────────────────────


def _timestamp(params=None) -> str:
    return str(int(time.time()))


def _timestamp_ms(params=None) -> str:
    return str(int(time.time() * 1000))


def _iso_timestamp(params=None) -> str:
    now = datetime.datetime.now(datetime.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _local_timestamp(params=None) -> str:
    return datetime.datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _date(params=None) -> str:
    date = datetime.datetime.now()
    fmt = "YYYY-MM-DD"
    if params:
        idx = 0
        if _OFFSET_RE.match(params[0]):
            date += datetime.timedelta(days=int(params[0]))
            idx = 1
        if len(params) > idx:
            # The format itself may contain ':' (HH:mm:ss)
            fmt = ":".join(params[idx:])
    return format_date(date, fmt)


def _uuid4(params=None) -> str:
    return str(uuid.uuid4())


def _uuid1(params=None) -> str:
    return uuid_v1()


def _random_int(params=None) -> str:
    try:
        low, high, _ = _bounds(params, int, 0, 1000)
    except ValueError:
        low, high = 0, 1000
    if low > high:
        low, high = high, low
    return str(random.randint(low, high))


def _random_float(params=None) -> str:
    precision = 2
    try:
        low, high, rest = _bounds(params, float, 0.0, 1.0)
    except ValueError:
        low, high, rest = 0.0, 1.0, []
    if rest and rest[0]:
        with contextlib.suppress(ValueError):
            precision = int(rest[0])
    value = random.random() * (high - low) + low
    return f"{value:.{max(precision, 0)}f}"


def _length(params, default: int) -> int:
    if params and params[0]:
        try:
            return int(params[0])
        except ValueError:
            return default
    return default


def _random_string(params=None) -> str:
    return random_chars(ALNUM, _length(params, 16))


def _random_hex(params=None) -> str:
    return random_chars(HEX, _length(params, 8))


def _random_email(params=None) -> str:
    return f"user-{random_chars(HEX, 5)}@rext.dev"


def _random_boolean(params=None) -> str:
    return "true" if random.random() < 0.5 else "false"


def _enum(params=None) -> str:
    if not params:
        return ""
    # Values may themselves contain ':'
    values = parse_enum_values(":".join(params))
    if not values:
        return ""
    return random.choice(values)


def _env(params=None) -> str:
    # Replaced by the variable store with the active environment name
    return "default"


DYNAMIC_VARS: dict[str, DynamicVar] = {
    "$timestamp": DynamicVar(_timestamp, "Unix epoch in seconds", "1740583516"),
    "$timestampMs": DynamicVar(_timestamp_ms, "Unix epoch in milliseconds", "1740583516000"),
    "$isoTimestamp": DynamicVar(
        _iso_timestamp, "ISO 8601 UTC date/time", "2026-02-26T15:35:16.000Z"
    ),
    "$localTimestamp": DynamicVar(_local_timestamp, "Local date/time", "2026-02-26 11:35:16"),
    "$date": DynamicVar(
        _date,
        "Formatted date, optional day offset (tokens: YYYY, MM, DD, HH, mm, ss, SSS, MMM, MMMM)",
        "2026-02-26",
        "$date:${1:YYYY-MM-DD}",
    ),
    "$uuid": DynamicVar(_uuid4, "UUID v4 (random)", "a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d"),
    "$guid": DynamicVar(_uuid4, "Alias of $uuid", "a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d"),
    "$uuidV1": DynamicVar(_uuid1, "UUID v1 (timestamp based)", "6fa459ea-ee8a-1a3e-5714-e6cdd17ab37c"),
    "$uuidV4": DynamicVar(_uuid4, "UUID v4 (random)", "a1b2c3d4-e5f6-4a7b-8c9d-0e1f2a3b4c5d"),
    "$randomInt": DynamicVar(
        _random_int, "Random integer (default 0-1000)", "742", "$randomInt:${1:0}:${2:1000}"
    ),
    "$randomFloat": DynamicVar(
        _random_float,
        "Random decimal (default 0-1, 2 decimals)",
        "0.73",
        "$randomFloat:${1:0}:${2:1}:${3:2}",
    ),
    "$randomString": DynamicVar(
        _random_string, "Random alphanumeric string (default 16 chars)", "aB3xK9mP2qR7wT1s",
        "$randomString:${1:16}",
    ),
    "$randomHex": DynamicVar(_random_hex, "Random hex string", "a3f2b1c0", "$randomHex:${1:8}"),
    "$randomEmail": DynamicVar(_random_email, "Random @rext.dev email", "user-a3f2b@rext.dev"),
    "$randomBoolean": DynamicVar(_random_boolean, '"true" or "false"', "true"),
    "$enum": DynamicVar(
        _enum,
        'Random pick from a list ("quotes" keep commas)',
        "pending",
        "$enum:${1:val1,val2,val3}",
    ),
    "$env": DynamicVar(_env, "Active environment name", "production"),
}


# ── Public API ───────────────────────────────────────────────────────────


def is_dynamic_variable(key: str) -> bool:
    if not key.startswith("$"):
        return False
    return key.split(":")[0] in DYNAMIC_VARS


def resolve_dynamic(raw: str) -> str | None:
    """Generate a value for "$name" or "$name:arg1:arg2".

    Returns None when ``raw`` is not a known dynamic variable.
    """
    if not raw.startswith("$"):
        return None
    parts = raw.split(":")
    entry = DYNAMIC_VARS.get(parts[0])
    if entry is None:
        return None
    params = parts[1:] if len(parts) > 1 else None
    return entry.generate(params)


def get_dynamic_var_names() -> list[str]:
    return list(DYNAMIC_VARS)


def get_dynamic_var_info(name: str) -> DynamicVar | None:
    return DYNAMIC_VARS.get(name.split(":")[0])
