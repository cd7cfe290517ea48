"""Preferences store and its build-time preprocessing.

Preferences are an ordered JSON object. A key may carry a policy suffix:

* ``name@Const``: the value is emitted verbatim, references included.
* ``name@Editor``: the key is tooling-only and never reaches a build.
* no suffix: ``${Namespace.Key}`` references in the value are resolved.

Before packaging, :class:`PrefsPreprocessor` reads the editable source store,
applies those policies and writes an encrypted snapshot to the build target.
"""

from __future__ import annotations

import base64
import copy
import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Dict, Iterable, List, Optional, Tuple

import aiofiles
import structlog
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from shipwright.core.environment import Environment
from shipwright.core.task_pipeline import ErrorKind
from shipwright.core.variables import VariableResolver
from shipwright.utils.exceptions import BuildAbortError, PreferencesError, UnresolvedReferenceError
from shipwright.utils.files import PathLike, normalize_path

SUFFIX_SEPARATOR = "@"
CONST_SUFFIX = "Const"
EDITOR_SUFFIX = "Editor"

DEFAULT_SECRET = "shipwright"
DEFAULT_SALT = b"shipwright.prefs"
KDF_ITERATIONS = 100000


def parse_key(key: str) -> Tuple[str, Optional[str]]:
    """Split ``name@Suffix`` into the name and the suffix.

    Returns:
        Tuple of the bare name and the suffix, or None when the key has none
    """
    name, separator, suffix = key.rpartition(SUFFIX_SEPARATOR)
    if not separator:
        return key, None
    if not name and suffix not in (CONST_SUFFIX, EDITOR_SUFFIX):
        return key, None
    return name, suffix


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass


def _same_file(first: str, second: str) -> bool:
    if os.path.exists(first) and os.path.exists(second):
        return os.path.samefile(first, second)
    return os.path.normcase(first) == os.path.normcase(second)


class PrefsCipher:
    """Symmetric encryption of preference snapshots.

    The Fernet key is derived from a passphrase with PBKDF2-HMAC-SHA256 and a
    fixed salt, so every process configured with the same secret can read the
    snapshots of the others.
    """

    def __init__(self, secret: str = DEFAULT_SECRET, salt: bytes = DEFAULT_SALT) -> None:
        if not secret:
            raise ValueError("Preferences secret must not be empty")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        self._fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))

    def encrypt(self, data: bytes) -> bytes:
        return self._fernet.encrypt(data)

    def decrypt(self, token: bytes) -> bytes:
        """Decrypt a snapshot.

        Raises:
            PreferencesError: If the token is corrupt or was made with another secret
        """
        try:
            return self._fernet.decrypt(token)
        except InvalidToken as e:
            raise PreferencesError("Invalid instance: snapshot cannot be decrypted") from e


class Preferences:
    """Ordered key/value store persisted as a JSON object.

    Attributes:
        file: Default path used by :meth:`read` and :meth:`save`
    """

    def __init__(self, file: Optional[PathLike] = None, cipher: Optional[PrefsCipher] = None) -> None:
        self.file = normalize_path(file) if file else ""
        self._cipher = cipher
        self._data: Dict[str, Any] = {}

    @property
    def encrypted(self) -> bool:
        return self._cipher is not None

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def get_string(self, key: str, default: str = "") -> str:
        """Get a value as text; structured values are returned as JSON."""
        value = self._data.get(key)
        if value is None:
            return default
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    def set(self, key: str, value: Any) -> None:
        if not key:
            raise ValueError("Preference key must not be empty")
        self._data[key] = value

    def has(self, key: str) -> bool:
        return key in self._data

    def unset(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        return True

    def keys(self) -> List[str]:
        return list(self._data)

    def items(self) -> List[Tuple[str, Any]]:
        return list(self._data.items())

    def clear(self) -> None:
        self._data.clear()

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def parse(self, text: str, source: str = "") -> None:
        """Replace the content with the JSON object in ``text``.

        Raises:
            PreferencesError: If the text is not a JSON object
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise PreferencesError(
                f"Invalid instance from {source or 'text'} for instantiating preferences: {e}",
                file=source or None,
            ) from e
        if not isinstance(data, dict):
            raise PreferencesError(
                f"Invalid instance from {source or 'text'} for instantiating preferences: "
                f"expected an object, got {type(data).__name__}",
                file=source or None,
            )
        self._data = data

    def serialize(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self._data, indent=indent, ensure_ascii=False)

    def read(self, file: Optional[PathLike] = None) -> bool:
        """Load the store from ``file`` or :attr:`file`.

        Raises:
            PreferencesError: If the file is unset, missing or invalid
        """
        path = self._source(file)
        try:
            with open(path, "rb") as f:
                raw = f.read()
        except OSError as e:
            raise PreferencesError(f"Cannot read preferences {path}: {e}", file=path) from e
        self._decode(raw, path)
        return True

    async def read_async(self, file: Optional[PathLike] = None) -> bool:
        """Load the store like :meth:`read` without blocking the event loop."""
        path = self._source(file)
        try:
            async with aiofiles.open(path, "rb") as f:
                raw = await f.read()
        except OSError as e:
            raise PreferencesError(f"Cannot read preferences {path}: {e}", file=path) from e
        self._decode(raw, path)
        return True

    def save(self, file: Optional[PathLike] = None) -> str:
        """Write the store atomically and return the written path."""
        path = self._target(file)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        tmp = tempfile.NamedTemporaryFile("wb", delete=False, dir=directory, suffix=".tmp")
        try:
            with tmp:
                tmp.write(self._encode())
            os.replace(tmp.name, path)
        except BaseException:
            _discard(tmp.name)
            raise
        return path

    async def save_async(self, file: Optional[PathLike] = None) -> str:
        """Write the store like :meth:`save` without blocking the event loop."""
        path = self._target(file)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        temp_path = f"{path}.{os.getpid()}.{threading.get_ident()}.tmp"
        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(self._encode())
            os.replace(temp_path, path)
        except BaseException:
            _discard(temp_path)
            raise
        return path

    def _source(self, file: Optional[PathLike]) -> str:
        path = normalize_path(file) if file else self.file
        if not path:
            raise PreferencesError("Null file for instantiating preferences.")
        if not os.path.isfile(path):
            raise PreferencesError(f"Non exist file {path} for instantiating preferences.", file=path)
        return path

    def _target(self, file: Optional[PathLike]) -> str:
        path = normalize_path(file) if file else self.file
        if not path:
            raise PreferencesError("Null file for saving preferences.")
        return path

    def _decode(self, raw: bytes, path: str) -> None:
        if self._cipher is not None:
            try:
                raw = self._cipher.decrypt(raw)
            except PreferencesError as e:
                raise PreferencesError(
                    f"Invalid instance from file {path} for instantiating preferences.", file=path
                ) from e
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise PreferencesError(
                f"Invalid instance from file {path} for instantiating preferences.", file=path
            ) from e
        self.parse(text, path)

    def _encode(self) -> bytes:
        data = self.serialize().encode("utf-8")
        if self._cipher is not None:
            data = self._cipher.encrypt(data)
        return data


Validator = Callable[[Preferences], Optional[str]]


@dataclass
class PreprocessOutcome:
    """Result of one preprocessing run.

    Attributes:
        succeeded: Whether the snapshot was written
        error: Reason of the abort
        error_kind: ``ErrorKind.BUILD_ABORT`` when the run aborted
        snapshot_path: Path of the written snapshot
        evaluated: Keys whose values went through reference resolution
        stripped: Editor-only keys removed from the snapshot
        unresolved: References kept verbatim in non-strict mode
    """
    succeeded: bool = False
    error: Optional[str] = None
    error_kind: ErrorKind = ErrorKind.NONE
    snapshot_path: str = ""
    evaluated: List[str] = field(default_factory=list)
    stripped: List[str] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)


class PrefsPreprocessor:
    """Produces the build-time snapshot of a preferences store.

    One run reads the source, resolves references in evaluated keys, drops
    editor-only keys and writes the encrypted snapshot. Abort conditions are
    reported through :class:`PreprocessOutcome`; nothing is written then.
    Runs on the same source must not overlap; an overlapping run aborts.
    """

    _active: ClassVar[Dict[str, threading.Lock]] = {}
    _active_guard: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
            self,
            source: Optional[PathLike],
            target: Optional[PathLike],
            environment: Environment,
            cipher: Optional[PrefsCipher] = None,
            strict: bool = True,
            validators: Iterable[Validator] = (),
            logger: Any = None,
    ) -> None:
        self.source = normalize_path(source) if source else ""
        self.target = normalize_path(target) if target else ""
        self.environment = environment
        self.cipher = cipher or PrefsCipher()
        self.strict = strict
        self.validators = list(validators)
        self._logger = logger or structlog.get_logger("prefs")

    @classmethod
    def from_config(
            cls,
            section: Optional[Dict[str, Any]],
            environment: Environment,
            logger: Any = None,
    ) -> "PrefsPreprocessor":
        """Create a preprocessor from the ``prefs`` configuration section.

        Relative paths are resolved against the project.
        """
        section = section or {}

        def resolve(value: Optional[str]) -> str:
            if not value:
                return ""
            return value if os.path.isabs(value) else os.path.join(environment.project_path, value)

        return cls(
            resolve(section.get("source")),
            resolve(section.get("target")),
            environment,
            cipher=PrefsCipher(section.get("secret") or DEFAULT_SECRET),
            strict=bool(section.get("strict", True)),
            logger=logger,
        )

    async def run(self) -> PreprocessOutcome:
        """Write the snapshot, reporting abort conditions in the outcome."""
        outcome = PreprocessOutcome()
        if not self.source:
            return self._abort(outcome, "Null file for instantiating preferences.")

        lock = self._lock_for(self.source)
        if not lock.acquire(blocking=False):
            return self._abort(outcome, f"Preferences {self.source} are already being preprocessed")
        try:
            return await self._run(outcome)
        finally:
            lock.release()

    async def process(self) -> PreprocessOutcome:
        """Run as a build hook.

        Raises:
            BuildAbortError: If the run aborted
        """
        outcome = await self.run()
        if not outcome.succeeded:
            raise BuildAbortError(outcome.error or "Preferences preprocessing failed", stage="prefs")
        return outcome

    def evaluate(self, store: Preferences, outcome: Optional[PreprocessOutcome] = None) -> Dict[str, Any]:
        """Apply the key policies to ``store`` without writing anything.

        Raises:
            UnresolvedReferenceError: If a reference cannot be resolved in strict mode
        """
        outcome = outcome if outcome is not None else PreprocessOutcome()
        resolver = VariableResolver(strict=self.strict)
        resolver.register("Env", self.environment.lookup)
        resolver.register("Prefs", lambda key: self._prefs_lookup(store, key))
        data = self._evaluate_mapping(store.to_dict(), resolver, outcome, "")
        outcome.unresolved = list(resolver.unresolved)
        return data

    async def _run(self, outcome: PreprocessOutcome) -> PreprocessOutcome:
        if self.target and _same_file(self.source, self.target):
            return self._abort(outcome, f"Preferences snapshot target {self.target} is the source file")

        store = Preferences(self.source)
        try:
            await store.read_async()
        except PreferencesError as e:
            return self._abort(outcome, str(e))

        if not store.keys():
            return self._abort(outcome, f"Preferences {self.source} contain no keys")

        for validator in self.validators:
            message = validator(store)
            if message:
                return self._abort(outcome, f"Preferences validation failed: {message}")

        try:
            data = self.evaluate(store, outcome)
        except UnresolvedReferenceError as e:
            return self._abort(outcome, f"{e} in {self.source}")
        if outcome.unresolved:
            refs = ", ".join(f"${{{path}}}" for path in outcome.unresolved)
            self._logger.warning(f"Unresolved references kept verbatim in {self.source}: {refs}")

        if not self.target:
            return self._abort(outcome, "Null file for saving preferences.")

        snapshot = Preferences(self.target, self.cipher)
        for key, value in data.items():
            snapshot.set(key, value)
        try:
            outcome.snapshot_path = await snapshot.save_async()
        except OSError as e:
            return self._abort(outcome, f"Cannot write preferences snapshot {self.target}: {e}")

        outcome.succeeded = True
        self._logger.info(
            f"Preferences {self.source} written to {outcome.snapshot_path} "
            f"({len(outcome.evaluated)} evaluated, {len(outcome.stripped)} stripped)"
        )
        return outcome

    def _evaluate_mapping(
            self,
            mapping: Dict[str, Any],
            resolver: VariableResolver,
            outcome: PreprocessOutcome,
            prefix: str,
    ) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in mapping.items():
            path = f"{prefix}{key}"
            _, suffix = parse_key(key)
            if suffix == EDITOR_SUFFIX:
                outcome.stripped.append(path)
                continue
            if suffix == CONST_SUFFIX:
                result[key] = value
                continue
            if isinstance(value, dict):
                result[key] = self._evaluate_mapping(value, resolver, outcome, f"{path}.")
                continue
            if isinstance(value, str):
                result[key] = resolver.evaluate(value)
                outcome.evaluated.append(path)
            elif isinstance(value, list):
                result[key] = self._evaluate_list(value, resolver, outcome, path)
                outcome.evaluated.append(path)
            else:
                result[key] = value
        return result

    def _evaluate_list(
            self,
            items: List[Any],
            resolver: VariableResolver,
            outcome: PreprocessOutcome,
            path: str,
    ) -> List[Any]:
        result: List[Any] = []
        for index, item in enumerate(items):
            if isinstance(item, str):
                result.append(resolver.evaluate(item))
            elif isinstance(item, dict):
                result.append(self._evaluate_mapping(item, resolver, outcome, f"{path}[{index}]."))
            elif isinstance(item, list):
                result.append(self._evaluate_list(item, resolver, outcome, f"{path}[{index}]"))
            else:
                result.append(item)
        return result

    @staticmethod
    def _prefs_lookup(store: Preferences, key: str) -> Optional[str]:
        for candidate in (key, f"{key}{SUFFIX_SEPARATOR}{CONST_SUFFIX}"):
            if store.has(candidate):
                return store.get_string(candidate)
        return None

    def _abort(self, outcome: PreprocessOutcome, message: str) -> PreprocessOutcome:
        outcome.succeeded = False
        outcome.error = message
        outcome.error_kind = ErrorKind.BUILD_ABORT
        self._logger.error(f"Preferences preprocessing aborted: {message}")
        return outcome

    @classmethod
    def _lock_for(cls, source: str) -> threading.Lock:
        with cls._active_guard:
            lock = cls._active.get(source)
            if lock is None:
                lock = cls._active[source] = threading.Lock()
            return lock
