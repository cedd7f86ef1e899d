"""
Key-value preference store.

Remembers small bits of editor state between runs, such as the last
chapter that was selected. Backed by a JSON file, or kept in memory when
no path is given.
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional

from smiltune.utils import logger


class PreferenceStore:
    """Persistent key-value preferences."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        self._values: Dict[str, Any] = {}
        if self.path is not None:
            self._values = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable preferences {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(self._values, f, indent=2, ensure_ascii=False)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if self._values.get(key) == value:
            return
        self._values[key] = value
        self._save()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._save()

    def __contains__(self, key: str) -> bool:
        return key in self._values
