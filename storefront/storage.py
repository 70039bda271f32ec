"""
Persistent key-value storage

String values under string keys, the way the browser's local storage holds
cart snapshots, shipping info and the cached session token.
"""

import abc
import json
import os
import tempfile
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)

SHIPPING_INFO_KEY = "shippingInfo"
TOKEN_KEY = "token"
USER_KEY = "user"


def cart_key(user_id: str) -> str:
    return f"cartItems_{user_id}"


class Storage(abc.ABC):
    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abc.abstractmethod
    def remove(self, key: str) -> None:
        ...

    def get_json(self, key: str, default: Any = None) -> Any:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("storage.corrupt_value", key=key)
            return default

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value))


class MemoryStorage(Storage):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class FileStorage(MemoryStorage):
    """MemoryStorage mirrored to a JSON file, rewritten on every change."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(self._read())

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, encoding="utf-8") as fh:
            try:
                data = json.load(fh)
            except ValueError:
                logger.warning("storage.unreadable_file", path=self.path)
                return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _flush(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(self._data, fh)
        os.replace(tmp_path, self.path)

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self._flush()

    def remove(self, key: str) -> None:
        super().remove(key)
        self._flush()
