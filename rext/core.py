"""rext core - config loading, environment files, store wiring."""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

from rext.storage import ENVIRONMENT_FILE, EnvironmentFile, JsonFileStore
from rext.variables import VariableStore

GLOBAL_DIR = Path.home() / ".rext"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"
GLOBAL_VARIABLES_FILE = GLOBAL_DIR / "globals.json"

CWD_CONFIG_CANDIDATES = [
    ".rext.yaml",
    ".rext.yml",
    "rext.yaml",
    "rext.yml",
]


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (no fallthrough if missing)
      2. .rext.yaml (variants) in CWD
      3. ~/.rext/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty defaults if not found.

    Stores '_config_dir' in the returned dict so relative paths in the
    config resolve against the config file's directory.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ (.env values win)."""
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: Any, env: dict[str, str]) -> Any:
    """Resolve $VAR and ${VAR} references in a string value.

    Unknown names are left as written. Non-strings pass through.
    """
    if not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, os.environ.get(var_name, m.group(0)))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def resolve_in_obj(obj: Any, env: dict[str, str]) -> Any:
    """Recursively resolve ${VAR} references in dicts, lists, and strings."""
    if isinstance(obj, str):
        return resolve_value(obj, env)
    if isinstance(obj, dict):
        return {k: resolve_in_obj(v, env) for k, v in obj.items()}
    if isinstance(obj, list):
        return [resolve_in_obj(item, env) for item in obj]
    return obj


def _config_relative(value: str | None, config: dict, default: Path) -> Path:
    if not value:
        return default
    p = Path(value).expanduser()
    config_dir = config.get("_config_dir")
    if not p.is_absolute() and config_dir:
        p = Path(config_dir) / p
    return p


def environment_file_path(config: dict, request_path: str | Path | None = None) -> Path:
    """Where the named-environment file lives.

    environment_file from config (relative to the config file), else
    rext.env.json next to the request file, else in CWD.
    """
    defaults = config.get("defaults", {})
    if request_path is not None:
        fallback = Path(request_path).resolve().parent / ENVIRONMENT_FILE
    else:
        fallback = Path(ENVIRONMENT_FILE)
    return _config_relative(defaults.get("environment_file"), config, fallback)


def build_store(
    config: dict,
    env: dict[str, str],
    request_path: str | Path | None = None,
    environment: str | None = None,
) -> tuple[VariableStore, EnvironmentFile]:
    """Wire a VariableStore for a run from the CLI.

    - global layer: JSON map at globals_file (default ~/.rext/globals.json)
    - env layer: active set of the environment file, ${VAR} expanded from env
    - collection layer: .rext.collection.json next to the request file
    - env captures are written back into the environment file
    """
    defaults = config.get("defaults", {})
    globals_path = _config_relative(defaults.get("globals_file"), config, GLOBAL_VARIABLES_FILE)
    env_file = EnvironmentFile(environment_file_path(config, request_path))

    store = VariableStore(
        global_store=JsonFileStore(globals_path),
        env_writer=env_file.set_variable,
    )

    name = environment or defaults.get("environment")
    if name and name in env_file.names() and name != env_file.active:
        env_file.set_active(name)
    if env_file.active:
        store.load_environment(
            resolve_in_obj(env_file.variables(), env),
            name=env_file.active,
        )

    if request_path is not None:
        store.load_collection(request_path)

    return store, env_file
