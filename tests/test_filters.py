"""Tests for path access, assertion evaluation, and output formatting."""

import math

import pytest

from rext.filters import (
    MISSING,
    ci_get,
    compare,
    evaluate_assertions,
    extract_value,
    format_output,
    get_path,
    is_empty,
    is_number,
    parse_assertion,
    parse_path,
    parse_set_cookies,
    resolve_actual,
    serialized_size,
    stringify,
    to_number,
)
from rext.models import AssertionResult, Cookie, ExecutionResult

# ── Paths ────────────────────────────────────────────────────────────────


class TestPaths:
    def test_parse_path(self):
        assert parse_path("a.b") == ["a", "b"]
        assert parse_path("items[0].id") == ["items", 0, "id"]
        assert parse_path("matrix[1][2]") == ["matrix", 1, 2]
        assert parse_path("items.0.id") == ["items", "0", "id"]
        assert parse_path("[3]") == [3]

    def test_get_nested(self):
        data = {"user": {"profile": {"name": "Bob"}}}
        assert get_path(data, "user.profile.name") == "Bob"

    def test_index_forms(self):
        data = {"items": [{"id": 7}, {"id": 8}]}
        assert get_path(data, "items[0].id") == 7
        assert get_path(data, "items.1.id") == 8

    def test_missing_vs_null(self):
        data = {"a": None}
        assert get_path(data, "a") is None
        assert get_path(data, "b") is MISSING
        assert get_path(data, "a.b") is MISSING

    def test_out_of_range(self):
        assert get_path({"items": []}, "items[0]") is MISSING

    def test_case_sensitive(self):
        assert get_path({"Name": "x"}, "name") is MISSING

    def test_scalar_root(self):
        assert get_path("text", "a") is MISSING

    def test_extract_value_strips_body_prefix(self):
        data = {"token": "abc"}
        assert extract_value(data, "body.token") == "abc"
        assert extract_value(data, "token") == "abc"
        assert extract_value(data, "body") == data

    def test_ci_get(self):
        headers = {"Content-Type": "application/json"}
        assert ci_get(headers, "content-type") == "application/json"
        assert ci_get(headers, "X-Nope") is MISSING

    def test_missing_is_falsy(self):
        assert not MISSING
        assert repr(MISSING) == "MISSING"


# ── Coercion ─────────────────────────────────────────────────────────────


class TestCoercion:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (MISSING, "undefined"),
            (None, "null"),
            (True, "true"),
            (False, "false"),
            (200, "200"),
            (3.0, "3"),
            (0.5, "0.5"),
            ("x", "x"),
            ({"a": [1, 2]}, '{"a":[1,2]}'),
            (["é"], '["é"]'),
        ],
    )
    def test_stringify(self, value, expected):
        assert stringify(value) == expected

    def test_to_number(self):
        assert to_number("42") == 42.0
        assert to_number(" 1.5 ") == 1.5
        assert to_number("") == 0.0
        assert to_number(None) == 0.0
        assert to_number(True) == 1.0
        assert math.isnan(to_number("abc"))
        assert math.isnan(to_number(MISSING))
        assert math.isnan(to_number([1]))

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("1e3", 1000.0),
            (".5", 0.5),
            ("5.", 5.0),
            ("-2", -2.0),
            ("0x10", 16.0),
            ("0b101", 5.0),
            ("0o17", 15.0),
            ("Infinity", math.inf),
            ("-Infinity", -math.inf),
        ],
    )
    def test_to_number_js_grammar(self, text, expected):
        assert to_number(text) == expected

    @pytest.mark.parametrize("text", ["1_000", "inf", "nan", "infinity", "-0x10", "0b2", "1e", "12px"])
    def test_to_number_rejects_non_js_numbers(self, text):
        assert math.isnan(to_number(text))

    def test_ordering_uses_js_coercion(self):
        context = {"body": {"count": "1_000", "mask": "0x10"}}
        [underscored, hex_value] = evaluate_assertions(
            [parse_assertion("body.count > 1"), parse_assertion("body.mask == 0x10")], context
        )
        assert underscored.passed is False
        assert hex_value.passed is True
        [hex_order] = evaluate_assertions([parse_assertion("body.mask > 15")], context)
        assert hex_order.passed is True

    @pytest.mark.parametrize(
        "value, expected",
        [
            (1, True),
            (1.5, True),
            ("12", True),
            ("0x1f", True),
            ("1_000", False),
            ("nan", False),
            (True, False),
            ("", False),
            ("x", False),
            (None, False),
        ],
    )
    def test_is_number(self, value, expected):
        assert is_number(value) is expected

    @pytest.mark.parametrize(
        "value, expected",
        [(MISSING, True), (None, True), ("", True), ([], True), ({}, True), ("a", False), (0, False)],
    )
    def test_is_empty(self, value, expected):
        assert is_empty(value) is expected

    def test_serialized_size(self):
        assert serialized_size(None) == 0
        assert serialized_size("héllo") == 6
        assert serialized_size({"a": 1}) == len('{"a":1}')
        assert serialized_size(b"\x00\x01") == 2


# ── Cookies ──────────────────────────────────────────────────────────────


class TestCookies:
    def test_parse(self):
        cookies = parse_set_cookies(["sid=abc; Path=/; HttpOnly", "theme=dark", "garbage"])
        assert cookies == [
            Cookie("sid", "abc", "Path=/; HttpOnly"),
            Cookie("theme", "dark", ""),
        ]

    def test_value_with_equals(self):
        assert parse_set_cookies(["t=a=b"])[0].value == "a=b"


# ── Assertions ───────────────────────────────────────────────────────────


CONTEXT = {
    "status": 200,
    "body": {"id": 5, "items": [1, 2], "empty": [], "nothing": None, "msg": "hello world"},
    "headers": {"Content-Type": "application/json; charset=utf-8"},
    "duration": 120,
    "size": 512,
    "cookies": [Cookie("sid", "abc")],
}


class TestAssertions:
    def test_parse_strips_prefix(self):
        a = parse_assertion("@assert status == 200")
        assert (a.target, a.operator, a.expected) == ("status", "==", "200")

    def test_parse_cookie(self):
        a = parse_assertion("cookie.sid exists")
        assert (a.target, a.path, a.operator) == ("cookie", "sid", "exists")

    def test_resolve_actual(self):
        assert resolve_actual(parse_assertion("status == 1"), CONTEXT) == 200
        assert resolve_actual(parse_assertion("body.items[1] == 2"), CONTEXT) == 2
        assert resolve_actual(parse_assertion("header.content-type exists"), CONTEXT).startswith(
            "application/json"
        )
        assert resolve_actual(parse_assertion("cookie.sid exists"), CONTEXT) == "abc"
        assert resolve_actual(parse_assertion("cookie.nope exists"), CONTEXT) is MISSING

    @pytest.mark.parametrize(
        "expr, expected",
        [
            ("status == 200", True),
            ("status != 200", False),
            ("status >= 200", True),
            ("status < 300", True),
            ("status > 200", False),
            ("duration < 500", True),
            ("size <= 512", True),
            ("body.id == 5", True),
            ("body.id > abc", False),
            ("body.msg == hello world", True),
            ('body.msg == "hello world"', False),
            ("body.msg contains world", True),
            ("header.Content-Type contains json", True),
            ("body.items isArray", True),
            ("body.id isNumber", True),
            ("body.nothing isNull", True),
            ("body.gone isUndefined", True),
            ("body.empty isEmpty", True),
            ("body.gone isEmpty", True),
            ("body.id exists", True),
            ("body.nothing exists", False),
            ("body.gone !exists", True),
            ("body.gone == undefined", True),
            ("body.items == [1,2]", True),
            ("cookie.sid == abc", True),
        ],
    )
    def test_evaluate(self, expr, expected):
        [result] = evaluate_assertions([parse_assertion(expr)], CONTEXT)
        assert result.passed is expected, expr

    def test_failure_does_not_stop_others(self):
        exprs = ["status == 500", "body.id == 5"]
        results = evaluate_assertions([parse_assertion(e) for e in exprs], CONTEXT)
        assert [r.passed for r in results] == [False, True]
        assert results[0].label == "status == 500"

    def test_unknown_operator(self):
        assert compare("~=", 1, "1") is False


# ── Output ───────────────────────────────────────────────────────────────


class TestFormatOutput:
    def _result(self, **kwargs):
        defaults = {"method": "GET", "url": "http://x/api", "status": 200, "duration_ms": 42}
        defaults.update(kwargs)
        return ExecutionResult(**defaults)

    def test_basic(self):
        out = format_output(self._result(body={"ok": True}))
        assert "STATUS: 200" in out
        assert "TIME: 42ms" in out
        assert '"ok": true' in out
        assert "ATTEMPTS" not in out
        assert "HEADERS" not in out

    def test_verbose(self):
        out = format_output(
            self._result(body="hi", headers={"X-A": "1"}, size=2), verbose=True
        )
        assert "SIZE: 2B" in out
        assert "  X-A: 1" in out

    def test_raw(self):
        assert format_output(self._result(body={"a": 1}), raw=True) == '{\n  "a": 1\n}'
        assert format_output(self._result(body=None), raw=True) == ""

    def test_assertions_listed(self):
        out = format_output(
            self._result(
                assertions=[
                    AssertionResult("status == 200", True),
                    AssertionResult("body.id exists", False),
                ]
            )
        )
        assert "[PASS] status == 200" in out
        assert "[FAIL] body.id exists" in out

    def test_retries_shown(self):
        out = format_output(self._result(attempts=2, max_attempts=3))
        assert "ATTEMPTS: 2/3" in out

    def test_error(self):
        out = format_output(
            self._result(status=0, error="Connection error: refused", body="Connection error: refused")
        )
        assert "ERROR: Connection error: refused" in out
        assert "STATUS" not in out

    def test_pre_results(self):
        pre = self._result(name="Login", status=201, duration_ms=5)
        out = format_output(self._result(pre_results=[pre]))
        assert "[pre: Login] STATUS: 201 (5ms)" in out
