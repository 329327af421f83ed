"""
Persisted key-value store used for the capped security, audit, health and
critical-alert streams.

Values are strings; list-valued streams are stored as JSON arrays and
trimmed to a fixed capacity on every append (oldest entries first).
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Any, Union

from utils.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """Synchronous string-valued key-value store."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove(self, key: str) -> None:
        pass


class InMemoryStore(KeyValueStore):
    """Process-local store. Contents are lost on restart."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data.keys())


class JsonFileStore(KeyValueStore):
    """
    Store persisted as a single JSON object on disk.

    The whole file is rewritten on every mutation through a temporary file
    and an atomic rename. Single writer per file is assumed.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, str] = self._load()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    # Private methods

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Could not read store file {self.path}: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Store file {self.path} does not contain a JSON object, ignoring it")
            return {}

        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self._data, f)
        os.replace(tmp_path, self.path)


def read_json_list(store: KeyValueStore, key: str) -> List[Dict[str, Any]]:
    """Read a JSON array stored under ``key``; missing or corrupt values read as empty."""
    raw = store.get(key)
    if not raw:
        return []

    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding corrupt JSON list stored under '{key}'")
        return []

    return value if isinstance(value, list) else []


def write_json_list(store: KeyValueStore, key: str, entries: List[Dict[str, Any]]) -> None:
    store.set(key, json.dumps(entries, default=str))


def append_capped(
    store: KeyValueStore,
    key: str,
    entry: Dict[str, Any],
    capacity: int
) -> List[Dict[str, Any]]:
    """
    Append ``entry`` to the list under ``key`` and keep only the newest
    ``capacity`` entries.

    Returns:
        The list as written to the store
    """
    entries = read_json_list(store, key)
    entries.append(entry)
    if len(entries) > capacity:
        entries = entries[-capacity:]
    write_json_list(store, key, entries)
    return entries


def filter_json_list(store: KeyValueStore, key: str, keep) -> int:
    """
    Rewrite the list under ``key`` keeping entries for which ``keep(entry)``
    is true.

    Returns:
        Number of entries removed
    """
    entries = read_json_list(store, key)
    kept = [entry for entry in entries if keep(entry)]
    if len(kept) != len(entries):
        write_json_list(store, key, kept)
    return len(entries) - len(kept)
