"""rext storage - backends for the variable scopes.

The variable store only needs get/set/all/replace/clear on each layer; where
the values live (memory, a JSON side file, host storage) is decided by
whoever builds the store.
"""

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

COLLECTION_FILE = ".rext.collection.json"
ENVIRONMENT_FILE = "rext.env.json"
ACTIVE_KEY = "$active"


class MemoryStore:
    """Plain dict-backed layer. Nothing survives the process."""

    def __init__(self, values: dict[str, str] | None = None):
        self._values: dict[str, str] = dict(values or {})

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def all(self) -> dict[str, str]:
        return dict(self._values)

    def replace(self, values: dict[str, str]) -> None:
        self._values = dict(values)

    def clear(self) -> None:
        self._values = {}


class JsonFileStore(MemoryStore):
    """Flat key/value map persisted as pretty-printed JSON.

    The file is read on construction; every write rewrites it. A missing or
    unreadable file starts the layer empty.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        super().__init__(_read_json_map(self.path))

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._persist()

    def replace(self, values: dict[str, str]) -> None:
        super().replace(values)
        self._persist()

    def clear(self) -> None:
        super().clear()
        self._persist()

    def _persist(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(self._values, f, indent=2)
        except OSError as e:
            logger.warning("Could not write %s: %s", self.path, e)


class EnvironmentFile:
    """Named variable sets plus an "$active" marker, stored in one JSON file.

    {"$active": "dev", "dev": {"base": "http://localhost"}, "prod": {...}}
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._data: dict[str, Any] = _read_json_map(self.path)
        self._active: str = self._data.get(ACTIVE_KEY) or ""
        if not self._active:
            names = self.names()
            self._active = names[0] if names else ""

    @property
    def active(self) -> str:
        return self._active

    def names(self) -> list[str]:
        return [k for k, v in self._data.items() if k != ACTIVE_KEY and isinstance(v, dict)]

    def variables(self, name: str | None = None) -> dict[str, Any]:
        env = self._data.get(name or self._active)
        return dict(env) if isinstance(env, dict) else {}

    def set_active(self, name: str) -> None:
        self._active = name
        self._data[ACTIVE_KEY] = name
        self._persist()

    def set_variable(self, key: str, value: str) -> None:
        """Write into the active set; "a.b" nests as {"a": {"b": value}}."""
        if not self._active:
            return
        env = self._data.get(self._active)
        if not isinstance(env, dict):
            return
        parts = key.split(".")
        current = env
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[parts[-1]] = value
        self._persist()

    def _persist(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(self._data, f, indent=2)
        except OSError as e:
            logger.warning("Could not write %s: %s", self.path, e)


def _read_json_map(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}
