"""
Durable key-value storage for small JSON-serialized values.

Values are strings, as they would be in browser local storage; callers
decide how to encode them.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Optional, Union

from .config import STORAGE_DIR

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_FILE = "storage.json"


class MemoryStorage:
    """Storage that lives only as long as the process (session storage)"""

    def __init__(self):
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str):
        self._items[key] = value

    def remove_item(self, key: str):
        self._items.pop(key, None)


class JsonFileStorage:
    """
    Storage backed by a single JSON object on disk.

    Every mutation rewrites the file through a temporary file and
    os.replace so a crash never leaves a half-written store behind.
    An unreadable or malformed file reads as empty.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else Path(STORAGE_DIR) / DEFAULT_STORAGE_FILE

    def _load(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable storage file %s: %s", self.path, e)
            return {}

        if not isinstance(data, dict):
            logger.warning("Ignoring storage file %s: expected a JSON object", self.path)
            return {}
        return {key: value for key, value in data.items() if isinstance(value, str)}

    def _save(self, data: Dict[str, str]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp, self.path)
        finally:
            if tmp.exists():
                tmp.unlink()

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str):
        data = self._load()
        data[key] = value
        self._save(data)

    def remove_item(self, key: str):
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)
