"""Unit tests for preferences and their build-time preprocessing."""

import asyncio
import json
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from shipwright.build.prefs import (
    Preferences,
    PrefsCipher,
    PrefsPreprocessor,
    parse_key,
)
from shipwright.core.task_pipeline import ErrorKind
from shipwright.utils.exceptions import BuildAbortError, PreferencesError


@pytest.fixture
def cipher():
    return PrefsCipher("test-secret")


@pytest.fixture
def target(project_dir: Path) -> Path:
    return project_dir / "Local" / "Build" / "Prefs.bin"


def write_prefs(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def read_snapshot(path: Path, cipher: PrefsCipher) -> Preferences:
    snapshot = Preferences(path, cipher)
    snapshot.read()
    return snapshot


def test_parse_key():
    assert parse_key("name") == ("name", None)
    assert parse_key("name@Const") == ("name", "Const")
    assert parse_key("mail@host@Editor") == ("mail@host", "Editor")
    assert parse_key("@Const") == ("", "Const")
    assert parse_key("@Editor") == ("", "Editor")
    assert parse_key("@Other") == ("@Other", None)


class TestPreferences:
    def test_store(self):
        store = Preferences()
        store.set("b", 1)
        store.set("a", {"x": [1, 2]})

        assert store.keys() == ["b", "a"]
        assert store.get("b") == 1
        assert store.get_string("b") == "1"
        assert store.get_string("a") == '{"x": [1, 2]}'
        assert store.get_string("missing", "none") == "none"
        assert "a" in store
        assert len(store) == 2

        assert store.unset("b") is True
        assert store.unset("b") is False
        store.clear()
        assert store.keys() == []

    def test_empty_key(self):
        with pytest.raises(ValueError):
            Preferences().set("", 1)

    def test_to_dict_is_a_copy(self):
        store = Preferences()
        store.set("a", {"x": 1})
        store.to_dict()["a"]["x"] = 2
        assert store.get("a") == {"x": 1}

    def test_read_and_save(self, tmp_path):
        path = write_prefs(tmp_path / "Prefs.json", {"name": "Hero", "level": 3})
        store = Preferences(path)
        assert store.read() is True
        assert store.items() == [("name", "Hero"), ("level", 3)]

        store.set("level", 4)
        saved = store.save(tmp_path / "out" / "Prefs.json")

        assert json.loads(Path(saved).read_text(encoding="utf-8")) == {"name": "Hero", "level": 4}

    def test_read_errors(self, tmp_path):
        with pytest.raises(PreferencesError, match="Null file for instantiating preferences"):
            Preferences().read()

        with pytest.raises(PreferencesError, match="Non exist file"):
            Preferences(tmp_path / "missing.json").read()

        invalid = tmp_path / "invalid.json"
        invalid.write_text("{not json")
        with pytest.raises(PreferencesError, match="Invalid instance from"):
            Preferences(invalid).read()

        array = write_prefs(tmp_path / "array.json", [1, 2])
        with pytest.raises(PreferencesError, match="expected an object"):
            Preferences(array).read()

    def test_encrypted_round_trip(self, tmp_path, cipher):
        store = Preferences(tmp_path / "Prefs.bin", cipher)
        store.set("token", "value")
        path = store.save()

        assert b"value" not in Path(path).read_bytes()
        assert read_snapshot(Path(path), cipher).get("token") == "value"

        with pytest.raises(PreferencesError, match="Invalid instance"):
            read_snapshot(Path(path), PrefsCipher("other-secret"))

    @pytest.mark.asyncio
    async def test_async_read_and_save(self, tmp_path, cipher):
        store = Preferences(tmp_path / "Prefs.bin", cipher)
        store.set("key", "value")
        await store.save_async()

        loaded = Preferences(tmp_path / "Prefs.bin", cipher)
        assert await loaded.read_async() is True
        assert loaded.get("key") == "value"
        assert [p.name for p in tmp_path.iterdir()] == ["Prefs.bin"]

    def test_failed_save_leaves_no_temp_file(self, tmp_path):
        store = Preferences(tmp_path / "Prefs.json")
        store.set("key", "value")

        with patch("shipwright.build.prefs.os.replace", side_effect=OSError("denied")):
            with pytest.raises(OSError):
                store.save()

        assert list(tmp_path.iterdir()) == []

    @pytest.mark.asyncio
    async def test_failed_async_save_leaves_no_temp_file(self, tmp_path, cipher):
        store = Preferences(tmp_path / "Prefs.bin", cipher)
        store.set("key", "value")

        with patch("shipwright.build.prefs.os.replace", side_effect=OSError("denied")):
            with pytest.raises(OSError):
                await store.save_async()

        assert list(tmp_path.iterdir()) == []

    def test_cipher_requires_secret(self):
        with pytest.raises(ValueError):
            PrefsCipher("")


class TestPrefsPreprocessor:
    @pytest.mark.asyncio
    async def test_snapshot(self, environment, prefs_file, target, cipher):
        preprocessor = PrefsPreprocessor(prefs_file, target, environment, cipher=cipher)

        outcome = await preprocessor.run()

        assert outcome.succeeded
        assert outcome.error_kind == ErrorKind.NONE
        assert outcome.snapshot_path == target.as_posix()
        assert outcome.evaluated == ["project"]
        assert outcome.stripped == ["editor_only@Editor"]

        snapshot = read_snapshot(target, cipher)
        assert snapshot.get("project") == environment.project_path
        assert snapshot.get("test_const_key@Const") == "${Env.ProjectPath}"
        assert not snapshot.has("editor_only@Editor")
        assert snapshot.get("count") == 3

        source = json.loads(prefs_file.read_text(encoding="utf-8"))
        assert source["project"] == "${Env.ProjectPath}"
        assert "editor_only@Editor" in source

    @pytest.mark.asyncio
    async def test_prefs_references_and_nesting(self, environment, project_dir, target, cipher):
        source = write_prefs(
            project_dir / "Local" / "Prefs.json",
            {
                "base@Const": "https://example.com",
                "name": "Hero",
                "greeting": "Hello ${Prefs.name} from ${Prefs.base}",
                "nested": {"path": "${Env.Channel}/${Prefs.name}", "hidden@Editor": 1},
                "list": ["${Env.Version}", 5, {"mode": "${Env.Mode}"}],
            },
        )
        preprocessor = PrefsPreprocessor(source, target, environment, cipher=cipher)

        outcome = await preprocessor.run()

        assert outcome.succeeded
        snapshot = read_snapshot(target, cipher)
        assert snapshot.get("greeting") == "Hello Hero from https://example.com"
        assert snapshot.get("nested") == {"path": "Channel/Hero"}
        assert snapshot.get("list") == ["1.2.3", 5, {"mode": "Debug"}]
        assert outcome.stripped == ["nested.hidden@Editor"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "{}", "{broken", "[1, 2]"])
    async def test_abort_without_snapshot(self, environment, project_dir, target, content):
        source = project_dir / "Local" / "Prefs.json"
        if content is not None:
            source.write_text(content, encoding="utf-8")
        preprocessor = PrefsPreprocessor(source, target, environment)

        outcome = await preprocessor.run()

        assert not outcome.succeeded
        assert outcome.error_kind == ErrorKind.BUILD_ABORT
        assert outcome.error
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_null_source(self, environment, target):
        outcome = await PrefsPreprocessor(None, target, environment).run()
        assert outcome.error == "Null file for instantiating preferences."

    @pytest.mark.asyncio
    async def test_unresolved_reference_strict(self, environment, project_dir, target):
        source = write_prefs(project_dir / "Local" / "Prefs.json", {"value": "${Prefs.missing}"})

        outcome = await PrefsPreprocessor(source, target, environment).run()

        assert not outcome.succeeded
        assert "Unresolved reference ${Prefs.missing}" in outcome.error
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_unresolved_reference_lenient(self, environment, project_dir, target, cipher):
        source = write_prefs(project_dir / "Local" / "Prefs.json", {"value": "${Prefs.missing}"})

        outcome = await PrefsPreprocessor(source, target, environment, cipher=cipher, strict=False).run()

        assert outcome.succeeded
        assert read_snapshot(target, cipher).get("value") == "${Prefs.missing}"
        assert outcome.unresolved == ["Prefs.missing"]

    @pytest.mark.asyncio
    async def test_target_must_differ_from_source(self, environment, prefs_file):
        original = prefs_file.read_bytes()

        outcome = await PrefsPreprocessor(prefs_file, prefs_file, environment).run()

        assert not outcome.succeeded
        assert outcome.error_kind == ErrorKind.BUILD_ABORT
        assert "is the source file" in outcome.error
        assert prefs_file.read_bytes() == original

    @pytest.mark.asyncio
    async def test_bare_suffix_keys(self, environment, project_dir, target, cipher):
        source = write_prefs(
            project_dir / "Local" / "Prefs.json",
            {"name": "Hero", "@Editor": "tooling", "@Const": "${Env.Channel}"},
        )

        outcome = await PrefsPreprocessor(source, target, environment, cipher=cipher).run()

        assert outcome.succeeded
        assert outcome.stripped == ["@Editor"]
        snapshot = read_snapshot(target, cipher)
        assert not snapshot.has("@Editor")
        assert snapshot.get("@Const") == "${Env.Channel}"

    @pytest.mark.asyncio
    async def test_validators(self, environment, prefs_file, target):
        def require_name(store):
            return None if store.has("name") else "name is required"

        outcome = await PrefsPreprocessor(prefs_file, target, environment, validators=[require_name]).run()

        assert not outcome.succeeded
        assert outcome.error == "Preferences validation failed: name is required"
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_process_raises(self, environment, project_dir, target):
        preprocessor = PrefsPreprocessor(project_dir / "Local" / "Missing.json", target, environment)

        with pytest.raises(BuildAbortError) as exc_info:
            await preprocessor.process()
        assert exc_info.value.details["stage"] == "prefs"

    @pytest.mark.asyncio
    async def test_overlapping_runs_abort(self, environment, prefs_file, target):
        preprocessor = PrefsPreprocessor(prefs_file, target, environment)
        lock = PrefsPreprocessor._lock_for(preprocessor.source)

        assert lock.acquire(blocking=False)
        try:
            outcome = await preprocessor.run()
        finally:
            lock.release()

        assert not outcome.succeeded
        assert "already being preprocessed" in outcome.error
        assert (await preprocessor.run()).succeeded

    def test_concurrent_sources_are_independent(self, environment, project_dir, cipher):
        results = {}

        def run(index: int) -> None:
            source = write_prefs(project_dir / f"Prefs{index}.json", {"index": str(index)})
            target = project_dir / "Build" / f"Prefs{index}.bin"
            results[index] = asyncio.run(
                PrefsPreprocessor(source, target, environment, cipher=cipher).run()
            ).succeeded

        threads = [threading.Thread(target=run, args=(i,)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results == {0: True, 1: True, 2: True, 3: True}

    def test_evaluate_does_not_write(self, environment, prefs_file, target):
        store = Preferences(prefs_file)
        store.read()

        data = PrefsPreprocessor(prefs_file, target, environment).evaluate(store)

        assert data["project"] == environment.project_path
        assert "editor_only@Editor" not in data
        assert not target.exists()

    def test_from_config(self, environment, project_dir):
        preprocessor = PrefsPreprocessor.from_config(
            {"source": "Local/Prefs.json", "target": "/abs/Prefs.bin", "strict": False}, environment
        )

        assert preprocessor.source == (project_dir / "Local" / "Prefs.json").as_posix()
        assert preprocessor.target == "/abs/Prefs.bin"
        assert preprocessor.strict is False
