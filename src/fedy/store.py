"""Document stores: keyed records with per-key compare-and-swap.

``TaskStore`` is written against :class:`DocumentStore`. Two backends ship:
an in-memory one for tests and embedding, and a directory of YAML files
that several processes can share.
"""

from __future__ import annotations

import copy
import fcntl
import os
import re
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any

import yaml

from fedy import log
from fedy.errors import StoreUnavailable, VersionConflict
from fedy.io_utils import read_text, replace_text

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+(/[A-Za-z0-9_.-]+)*$")


@dataclass
class Record:
    value: dict[str, Any]
    version: int


def check_key(key: str) -> str:
    if not _KEY_RE.match(key) or ".." in key.split("/"):
        raise ValueError(f"Invalid record key: {key!r}")
    return key


def _parse_pid(owner: str | None) -> int | None:
    if not owner:
        return None
    try:
        return int(owner.split()[0])
    except ValueError:
        return None


class DocumentStore(ABC):
    """Keyed record store with atomic per-key writes.

    Versions start at 1 for a new record; ``expected_version=0`` asserts the
    key does not exist yet.
    """

    @abstractmethod
    def read(self, key: str) -> Record | None:
        ...

    @abstractmethod
    def write(self, key: str, value: dict[str, Any]) -> int:
        """Unconditionally replace *key*; returns the new version."""
        ...

    @abstractmethod
    def compare_and_swap(self, key: str, value: dict[str, Any], expected_version: int) -> int:
        """Replace *key* only if its version is *expected_version*.

        Raises ``VersionConflict`` otherwise. Returns the new version.
        """
        ...

    @abstractmethod
    def delete(self, key: str, expected_version: int) -> None:
        """Remove *key* only if its version is *expected_version*."""
        ...


class MemoryDocumentStore(DocumentStore):
    """Thread-safe in-process store."""

    def __init__(self) -> None:
        self._records: dict[str, Record] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Record | None:
        check_key(key)
        with self._lock:
            rec = self._records.get(key)
            if rec is None:
                return None
            return Record(copy.deepcopy(rec.value), rec.version)

    def write(self, key: str, value: dict[str, Any]) -> int:
        check_key(key)
        with self._lock:
            current = self._records.get(key)
            version = (current.version if current else 0) + 1
            self._records[key] = Record(copy.deepcopy(value), version)
            return version

    def compare_and_swap(self, key: str, value: dict[str, Any], expected_version: int) -> int:
        check_key(key)
        with self._lock:
            current = self._records.get(key)
            actual = current.version if current else 0
            if actual != expected_version:
                raise VersionConflict(key, expected_version, actual)
            self._records[key] = Record(copy.deepcopy(value), actual + 1)
            return actual + 1

    def delete(self, key: str, expected_version: int) -> None:
        check_key(key)
        with self._lock:
            current = self._records.get(key)
            actual = current.version if current else 0
            if actual != expected_version:
                raise VersionConflict(key, expected_version, actual)
            self._records.pop(key, None)


class RecordLock:
    """PID-based exclusive lock file guarding one record.

    The lock file is created with ``O_EXCL`` so only one writer, thread or
    process, holds it. It contains the holder's PID and a per-acquisition
    token; ``release`` only removes a file that still carries our token.
    A lock left behind by a dead process is broken, one breaker at a time.

    Usage::

        with RecordLock(path.with_suffix(".lock"), timeout=5.0):
            ...
    """

    def __init__(self, lock_path: Path, timeout: float = 5.0, poll_interval: float = 0.05) -> None:
        self.lock_path = lock_path
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._owner: str | None = None

    def try_acquire(self) -> bool:
        owner = f"{os.getpid()} {uuid.uuid4().hex}"
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            seen = self._read_owner()
            holder = _parse_pid(seen)
            if holder is not None and not self._is_process_running(holder):
                self._break_stale(seen)
            return False
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(owner)
        self._owner = owner
        return True

    def _break_stale(self, seen: str | None) -> None:
        """Remove the lock file if it still holds *seen*.

        Breakers serialize on an ``flock`` of a side file, which the kernel
        drops if the breaker dies, so a lock taken after *seen* was read is
        never removed by mistake.
        """
        guard_path = self.lock_path.with_name(self.lock_path.name + ".break")
        with open(guard_path, "a", encoding="utf-8") as guard:
            try:
                fcntl.flock(guard, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                return
            try:
                if self._read_owner() == seen:
                    log.debug(f"Breaking stale lock {self.lock_path} (PID {_parse_pid(seen)})")
                    self.lock_path.unlink(missing_ok=True)
            finally:
                fcntl.flock(guard, fcntl.LOCK_UN)

    def acquire(self) -> None:
        """Wait up to ``timeout`` seconds for the lock, else ``StoreUnavailable``."""
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                if self.try_acquire():
                    return
            except OSError as exc:
                raise StoreUnavailable(f"Cannot lock {self.lock_path}: {exc}") from exc
            if time.monotonic() >= deadline:
                raise StoreUnavailable(
                    f"Timed out after {self.timeout}s waiting for {self.lock_path} "
                    f"(PID: {self.get_holder_pid()})"
                )
            time.sleep(self.poll_interval)

    def release(self) -> None:
        if self._owner is None:
            return
        if self._read_owner() == self._owner:
            self.lock_path.unlink(missing_ok=True)
        else:
            log.warn(f"Lock {self.lock_path} is no longer ours; leaving it in place")
        self._owner = None

    def _read_owner(self) -> str | None:
        try:
            return read_text(self.lock_path).strip()
        except OSError:
            return None

    def get_holder_pid(self) -> int | None:
        return _parse_pid(self._read_owner())

    @staticmethod
    def _is_process_running(pid: int) -> bool:
        try:
            os.kill(pid, 0)  # Signal 0 doesn't kill, just checks existence
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            # Process exists but we don't have permission to signal it
            return True
        except OSError:
            return True

    def __enter__(self) -> RecordLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.release()


class FileDocumentStore(DocumentStore):
    """One YAML file per record under *root*; ``task/3`` lives at ``root/task/3.yaml``."""

    def __init__(self, root: Path | str, lock_timeout: float = 5.0, lock_poll_interval: float = 0.05) -> None:
        self.root = Path(root)
        self.lock_timeout = lock_timeout
        self.lock_poll_interval = lock_poll_interval

    def path_for(self, key: str) -> Path:
        return self.root / f"{check_key(key)}.yaml"

    def _lock(self, path: Path) -> RecordLock:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot create {path.parent}: {exc}") from exc
        return RecordLock(
            path.with_name(path.name + ".lock"),
            timeout=self.lock_timeout,
            poll_interval=self.lock_poll_interval,
        )

    def _load(self, path: Path) -> Record | None:
        try:
            text = read_text(path)
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreUnavailable(f"Cannot read {path}: {exc}") from exc
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise StoreUnavailable(f"Malformed record {path}: {exc}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("version"), int):
            raise StoreUnavailable(f"Malformed record {path}: missing version")
        value = data.get("value") or {}
        if not isinstance(value, dict):
            raise StoreUnavailable(f"Malformed record {path}: value is not a mapping")
        return Record(value, data["version"])

    def _dump(self, path: Path, value: dict[str, Any], version: int) -> None:
        text = yaml.safe_dump({"version": version, "value": value}, sort_keys=False)
        try:
            replace_text(path, text)
        except OSError as exc:
            raise StoreUnavailable(f"Cannot write {path}: {exc}") from exc

    def read(self, key: str) -> Record | None:
        return self._load(self.path_for(key))

    def write(self, key: str, value: dict[str, Any]) -> int:
        path = self.path_for(key)
        with self._lock(path):
            current = self._load(path)
            version = (current.version if current else 0) + 1
            self._dump(path, value, version)
            return version

    def compare_and_swap(self, key: str, value: dict[str, Any], expected_version: int) -> int:
        path = self.path_for(key)
        with self._lock(path):
            current = self._load(path)
            actual = current.version if current else 0
            if actual != expected_version:
                raise VersionConflict(key, expected_version, actual)
            self._dump(path, value, actual + 1)
            return actual + 1

    def delete(self, key: str, expected_version: int) -> None:
        path = self.path_for(key)
        with self._lock(path):
            current = self._load(path)
            actual = current.version if current else 0
            if actual != expected_version:
                raise VersionConflict(key, expected_version, actual)
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise StoreUnavailable(f"Cannot delete {path}: {exc}") from exc
