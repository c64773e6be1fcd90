"""rext CLI - run requests from .rext files."""

import contextlib
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

import click

HISTORY_FILE = Path.home() / ".rext_history.json"
MAX_HISTORY = 50

TOOL_HELP = """\
rext — run HTTP requests described in plain-text .rext files.

\b
USAGE
─────
  rext FILE                 Run the first request in FILE
  rext FILE -i a1B2c3       Run the request with @id a1B2c3
  rext FILE -n "Get user"   Run the request with @name "Get user"
  rext FILE --all           Run every request, one after another
  rext FILE --list          List requests and reference problems
  rext FILE --resolve       Print the interpolated request, do not send

\b
FILE FORMAT
───────────
  \b
  ###
  @id a1B2c3
  @name Login
  @capture token = body.access_token
  @assert status == 200
  POST {{base}}/auth/login
  Content-Type: application/json

  {"user": "{{user}}", "nonce": "{{$uuid}}"}

  Directives: @id @name @group @tags @deprecated @collection @retry N [delay M]
  @timeout MS @pre ID @header K: V @query k=v @form k = v | @path @file PATH
  @capture [scope.]var = query @assert target[.path] op [expected]

\b
VARIABLES
─────────
  {{name}} reads session > collection > env > global.
  {{$uuid}}, {{$timestamp}}, {{$randomInt:1:10}}, {{$date:+1:DD/MM/YYYY}} ...
  -v key=value sets session variables for this run.

\b
CONFIG FILE (.rext.yaml)
────────────────────────
  \b
  defaults:
    env_file: .env                    # ${VAR} source for environment values
    environment_file: rext.env.json   # named environments + "$active"
    environment: dev                  # overrides "$active"
    globals_file: ~/.rext/globals.json
    timeout: 30000                    # ms, for requests without @timeout
    retry_delay: 500                  # ms between retry attempts

Exit status is 1 when an assertion fails or a request cannot be sent.
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("file", required=False)
@click.option("-i", "--id", "request_id", default=None, help="Run the request with this @id.")
@click.option("-n", "--name", "request_name", default=None, help="Run the request with this @name.")
@click.option("--all", "run_all", is_flag=True, default=False, help="Run every request in FILE.")
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .rext.yaml in CWD, then ~/.rext/config.yaml.",
)
@click.option(
    "-v",
    "--var",
    multiple=True,
    help="Session variable as key=value. Repeatable.",
)
@click.option("-e", "--env", "environment", default=None, help="Environment to activate.")
@click.option("--list", "show_list", is_flag=True, default=False, help="List requests in FILE.")
@click.option(
    "--resolve",
    "show_resolved",
    is_flag=True,
    default=False,
    help="Print the interpolated request without sending it.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Include response headers and size in output.",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Output raw body only. Useful for piping.",
)
@click.option("--history", is_flag=True, default=False, help="Show run history.")
@click.option("--debug", is_flag=True, default=False, help="Log engine activity to stderr.")
def main(
    file,
    request_id,
    request_name,
    run_all,
    config_file,
    var,
    environment,
    show_list,
    show_resolved,
    verbose,
    raw,
    history,
    debug,
):
    """Run HTTP requests described in .rext files."""
    from rext.core import build_store, load_config, load_env, resolve_config_path
    from rext.parser import parse_file

    if debug:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    if history:
        _cmd_history()
        return

    if not file:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(1)

    path = Path(file)
    if not path.is_file():
        click.echo(f"ERROR: File '{file}' not found.", err=True)
        sys.exit(1)

    parsed = parse_file(path)

    if show_list:
        _cmd_list(parsed.requests)
        return

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})
    env = load_env(defaults.get("env_file"), config.get("_config_dir") or ".")

    store, _env_file = build_store(config, env, path, environment)
    for v_str in var:
        if "=" in v_str:
            k, val = v_str.split("=", 1)
            store.set(k.strip(), val.strip())

    if run_all:
        targets = parsed.requests
    else:
        target = _select_request(parsed.requests, request_id, request_name)
        if target is None:
            label = request_id or request_name
            click.echo(
                f"ERROR: Request '{label}' not found in {file}." if label
                else f"ERROR: No requests found in {file}.",
                err=True,
            )
            sys.exit(1)
        targets = [target]

    if show_resolved:
        _cmd_resolve(targets, store)
        return

    _cmd_run(targets, parsed.requests, store, defaults, verbose, raw)


# ── Subcommand implementations ──────────────────────────────────────────


def _select_request(requests, request_id=None, request_name=None):
    from rext.parser import find_request

    if request_id:
        return find_request(requests, request_id)
    if request_name:
        for req in requests:
            if req.name == request_name:
                return req
        return None
    return requests[0] if requests else None


def _cmd_list(requests):
    from rext.parser import find_duplicate_ids, find_missing_pre_requests

    if not requests:
        click.echo("No requests found.")
        return

    click.echo(f"{len(requests)} requests:\n")
    for req in requests:
        rid = req.id or "------"
        flags = []
        if req.deprecated:
            flags.append("deprecated")
        if req.tags:
            flags.append(f"tags: {', '.join(req.tags)}")
        if req.pre_request_ids:
            flags.append(f"pre: {', '.join(req.pre_request_ids)}")
        label = f"  {rid}  {req.method:<7} {req.url}"
        if req.name:
            label += f"  — {req.name}"
        click.echo(label)
        if flags:
            click.echo(f"          {' | '.join(flags)}")

    warnings = []
    for req in requests:
        if req.has_missing_id:
            warnings.append(f"missing @id: {req.display_name} (line {req.start_line + 1})")
    for req, pre_id in find_missing_pre_requests(requests):
        warnings.append(f"unknown @pre {pre_id} in {req.display_name}")
    for rid, dupes in find_duplicate_ids(requests).items():
        warnings.append(f"duplicate @id {rid} ({len(dupes)} requests)")
    if warnings:
        click.echo("\nWarnings:")
        for w in warnings:
            click.echo(f"  {w}")


def _cmd_resolve(targets, store):
    from rext.runner import resolve_request

    for req in targets:
        resolved = resolve_request(req, store)
        click.echo(f"{resolved.method} {resolved.url}")
        for key, value in resolved.headers.items():
            click.echo(f"{key}: {value}")
        if resolved.form:
            for f in resolved.form:
                click.echo(f"[form] {f.key} = {'@' + f.file if f.file else f.value}")
        elif resolved.body_file:
            click.echo(f"[file] {resolved.body_file}")
        elif resolved.body:
            click.echo()
            click.echo(resolved.body)
        click.echo()


def _cmd_run(targets, all_requests, store, defaults, verbose, raw):
    from rext.filters import format_output
    from rext.runner import DEFAULT_RETRY_DELAY_MS, Runner

    runner = Runner(
        store,
        default_retry_delay_ms=_resolve_int(defaults.get("retry_delay"), DEFAULT_RETRY_DELAY_MS),
        default_timeout_ms=_resolve_int(defaults.get("timeout"), None),
    )

    failed = False
    for i, req in enumerate(targets):
        if len(targets) > 1:
            if i:
                click.echo()
            click.echo(f"### {req.display_name}")
        result = runner.run(req, all_requests)
        click.echo(format_output(result, verbose=verbose, raw=raw))
        _save_to_history(result, req.id)
        if not result.passed:
            failed = True

    if failed:
        sys.exit(1)


def _cmd_history():
    hist = _load_history()
    if not hist:
        click.echo("No run history.")
        return
    click.echo("Run history:\n")
    for i, entry in enumerate(hist):
        ts = entry.get("timestamp", "")
        m = entry.get("method", "?")
        label = entry.get("name") or entry.get("url", "?")
        status = entry.get("status", "?")
        click.echo(f"  [{i}] {m:<6} {label}  {status}  ({ts})")


# ── Helpers ──────────────────────────────────────────────────────────────


def _resolve_int(value, default):
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _load_history():
    try:
        if HISTORY_FILE.exists():
            return json.loads(HISTORY_FILE.read_text())
    except (OSError, ValueError):
        pass
    return []


def _save_to_history(result, request_id=None):
    hist = _load_history()
    entry = {
        "method": result.method,
        "url": result.url,
        "status": result.status,
        "duration_ms": result.duration_ms,
        "timestamp": datetime.now().isoformat(),
    }
    if result.name:
        entry["name"] = result.name
    if request_id:
        entry["id"] = request_id
    safe = {k: v for k, v in result.request_headers.items() if k.lower() != "authorization"}
    if safe:
        entry["headers"] = safe
    if result.assertions:
        entry["assertions"] = [{"label": a.label, "pass": a.passed} for a in result.assertions]
    hist.insert(0, entry)
    with contextlib.suppress(OSError):
        HISTORY_FILE.write_text(json.dumps(hist[:MAX_HISTORY], indent=2))
