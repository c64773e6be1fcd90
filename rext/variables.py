"""rext variables - layered variable store and {{...}} interpolation.

Read precedence: session -> collection -> env -> global. A name found in no
layer resolves to its own placeholder so unresolved requests stay readable.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

from rext.dynamic import resolve_dynamic
from rext.filters import stringify
from rext.models import SCOPES
from rext.storage import COLLECTION_FILE, JsonFileStore, MemoryStore

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{([^{}]+?)\}\}")
_NAME_RE = re.compile(r"^[\w.-]+$")


class VariableStore:
    """Variable layers with injected backends.

    Any object offering get/set/all/replace/clear and ``in`` works as a
    layer (see rext.storage). ``env_writer`` receives env-scope captures so a
    collaborator can persist them (e.g. EnvironmentFile.set_variable).
    """

    def __init__(
        self,
        session=None,
        collection=None,
        environment=None,
        global_store=None,
        env_writer: Callable[[str, str], None] | None = None,
    ):
        self.session = session if session is not None else MemoryStore()
        self.collection = collection if collection is not None else MemoryStore()
        self.environment = environment if environment is not None else MemoryStore()
        self.global_store = global_store if global_store is not None else MemoryStore()
        self.env_writer = env_writer
        self.active_environment: str | None = None

    def _layer(self, scope: str):
        if scope == "session":
            return self.session
        if scope == "collection":
            return self.collection
        if scope == "env":
            return self.environment
        if scope == "global":
            return self.global_store
        raise ValueError(f"Unknown variable scope: {scope!r} (expected one of {', '.join(SCOPES)})")

    # --- Writes ---

    def set_scoped(self, scope: str, key: str, value: Any) -> None:
        self._layer(scope).set(key, stringify(value))

    def set(self, key: str, value: Any) -> None:
        self.set_scoped("session", key, value)

    def persist_env(self, key: str, value: Any) -> None:
        """Hand an env-scope value to the environment persistence collaborator."""
        if self.env_writer is not None:
            self.env_writer(key, stringify(value))

    # --- Reads ---

    def lookup(self, key: str) -> str | None:
        for layer in (self.session, self.collection, self.environment, self.global_store):
            if key in layer:
                value = layer.get(key)
                # Hand-edited JSON side files may hold non-string values
                return value if isinstance(value, str) else stringify(value)
        return None

    def get(self, key: str) -> str:
        value = self.lookup(key)
        return value if value is not None else f"{{{{{key}}}}}"

    def replace_in_string(self, text: str) -> str:
        """Substitute every {{name}} and {{$dynamic:args}} in one pass.

        Substituted values are not scanned again.
        """
        if not text:
            return text

        def _replace(m: re.Match) -> str:
            key = m.group(1).strip()
            if key.startswith("$"):
                if key == "$env":
                    return self.active_environment or "default"
                value = resolve_dynamic(key)
                return value if value is not None else m.group(0)
            if not _NAME_RE.match(key):
                return m.group(0)
            value = self.lookup(key)
            return value if value is not None else m.group(0)

        return PLACEHOLDER_RE.sub(_replace, text)

    def get_scope_vars(self, scope: str) -> dict[str, str]:
        try:
            return self._layer(scope).all()
        except ValueError:
            return {}

    # --- Layer lifecycle ---

    def load_environment(self, variables: dict[str, Any], name: str | None = None) -> None:
        """Replace the env layer. Nested sets flatten to dotted names."""
        self.environment.replace(_flatten(variables))
        self.active_environment = name

    def clear_environment(self) -> None:
        self.environment.clear()
        self.active_environment = None

    def clear_session(self) -> None:
        self.session.clear()

    def load_collection(self, path: str | Path) -> Path:
        """Bind the collection layer to the side file next to ``path``.

        ``path`` is a request file or its directory. Returns the side file path.
        """
        path = Path(path)
        directory = path if path.is_dir() else path.parent
        side_file = directory / COLLECTION_FILE
        self.collection = JsonFileStore(side_file)
        logger.debug("Collection variables loaded from %s", side_file)
        return side_file


def _flatten(variables: dict[str, Any], prefix: str = "") -> dict[str, str]:
    flat: dict[str, str] = {}
    for key, value in variables.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = stringify(value)
    return flat
