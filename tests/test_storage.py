"""Tests for variable layer backends and the environment file."""

import json

from rext.storage import ACTIVE_KEY, EnvironmentFile, JsonFileStore, MemoryStore


class TestMemoryStore:
    def test_basic_ops(self):
        s = MemoryStore({"a": "1"})
        s.set("b", "2")
        assert "a" in s
        assert s.get("b") == "2"
        assert s.get("c") is None
        assert s.all() == {"a": "1", "b": "2"}
        s.replace({"z": "9"})
        assert s.all() == {"z": "9"}
        s.clear()
        assert s.all() == {}

    def test_all_is_a_copy(self):
        s = MemoryStore()
        s.all()["x"] = "1"
        assert "x" not in s


class TestJsonFileStore:
    def test_missing_file_starts_empty(self, tmp_path):
        assert JsonFileStore(tmp_path / "nope.json").all() == {}

    def test_writes_persist(self, tmp_path):
        path = tmp_path / "sub" / "vars.json"
        s = JsonFileStore(path)
        s.set("token", "abc")
        assert json.loads(path.read_text()) == {"token": "abc"}
        assert JsonFileStore(path).get("token") == "abc"

    def test_unreadable_file_starts_empty(self, tmp_path):
        path = tmp_path / "vars.json"
        path.write_text("{not json")
        assert JsonFileStore(path).all() == {}

    def test_non_object_ignored(self, tmp_path):
        path = tmp_path / "vars.json"
        path.write_text("[1, 2]")
        assert JsonFileStore(path).all() == {}

    def test_clear_persists(self, tmp_path):
        path = tmp_path / "vars.json"
        path.write_text('{"a": "1"}')
        JsonFileStore(path).clear()
        assert json.loads(path.read_text()) == {}


class TestEnvironmentFile:
    def _write(self, path, data):
        path.write_text(json.dumps(data))
        return path

    def test_active_marker(self, tmp_path):
        path = self._write(
            tmp_path / "rext.env.json",
            {ACTIVE_KEY: "prod", "dev": {"base": "d"}, "prod": {"base": "p"}},
        )
        env = EnvironmentFile(path)
        assert env.active == "prod"
        assert env.names() == ["dev", "prod"]
        assert env.variables() == {"base": "p"}
        assert env.variables("dev") == {"base": "d"}

    def test_first_set_is_default_active(self, tmp_path):
        path = self._write(tmp_path / "rext.env.json", {"dev": {}, "prod": {}})
        assert EnvironmentFile(path).active == "dev"

    def test_missing_file(self, tmp_path):
        env = EnvironmentFile(tmp_path / "rext.env.json")
        assert env.active == ""
        assert env.names() == []
        assert env.variables() == {}

    def test_set_active_persists(self, tmp_path):
        path = self._write(tmp_path / "rext.env.json", {"dev": {}, "prod": {}})
        EnvironmentFile(path).set_active("prod")
        assert json.loads(path.read_text())[ACTIVE_KEY] == "prod"

    def test_set_variable_nests_dotted_keys(self, tmp_path):
        path = self._write(tmp_path / "rext.env.json", {"dev": {"user": "flat"}})
        env = EnvironmentFile(path)
        env.set_variable("token", "abc")
        env.set_variable("user.id", "7")
        saved = json.loads(path.read_text())
        assert saved["dev"] == {"token": "abc", "user": {"id": "7"}}

    def test_set_variable_without_active_set(self, tmp_path):
        path = tmp_path / "rext.env.json"
        EnvironmentFile(path).set_variable("token", "abc")
        assert not path.exists()
