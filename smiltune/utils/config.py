"""
Configuration loader for the overlay timing editor.
"""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


class Config:
    """Configuration manager for overlay editing."""

    _instance: Optional["Config"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not self._config:
            self._load_config()

    def _get_project_root(self) -> Path:
        """Checkout root: two levels above smiltune/utils."""
        current = Path(__file__).resolve()
        return current.parent.parent.parent

    def _get_config_path(self) -> Path:
        """Resolve the settings file, honouring SMILTUNE_CONFIG."""
        override = os.environ.get("SMILTUNE_CONFIG")
        if override:
            return Path(override).expanduser()
        return self._get_project_root() / "config" / "settings.yaml"

    def _load_config(self) -> None:
        """Read settings.yaml, deep-merged over the defaults."""
        config_path = self._get_config_path()
        defaults = self._get_defaults()

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
            self._config = self._merge(defaults, loaded)
        else:
            self._config = defaults

    def _merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        merged = dict(base)
        for key, value in override.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = self._merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _get_defaults(self) -> Dict[str, Any]:
        """Built-in settings, overridden key by key by the YAML file."""
        return {
            "timing": {
                "min_duration": 0.1,
                "epsilon": 0.01,
                "default_fragment_duration": 1.0,
                "insert_order_step": 0.1,
            },
            "editing": {
                "delete_gap_policy": "keep",
            },
            "regions": {
                "auto_select_suppress": 0.3,
            },
            "waveform": {
                "peaks": 2000,
            },
            "export": {
                "clip_precision": 3,
                "suffix": "_synced",
            },
            "paths": {
                "output": "output",
                "preferences": ".smiltune/preferences.json",
            },
        }

    def reload(self) -> None:
        """Re-read the settings file."""
        self._config = {}
        self._load_config()

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Look up a nested setting, one key per level.

        Example:
            config.get("timing", "min_duration") -> 0.1
        """
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def get_path(self, key: str) -> Path:
        """Resolve a paths.<key> entry; relative entries hang off the project root."""
        relative_path = Path(self.get("paths", key, default=key)).expanduser()
        if relative_path.is_absolute():
            return relative_path
        return self._get_project_root() / relative_path

    @property
    def project_root(self) -> Path:
        """Directory holding config/ and the default output folder."""
        return self._get_project_root()

    @property
    def min_duration(self) -> float:
        """Shortest clip a fragment may have, in seconds."""
        return float(self.get("timing", "min_duration", default=0.1))

    @property
    def epsilon(self) -> float:
        """Tolerance for boundary comparisons, in seconds."""
        return float(self.get("timing", "epsilon", default=0.01))

    @property
    def default_fragment_duration(self) -> float:
        """Duration given to newly added fragments."""
        return float(self.get("timing", "default_fragment_duration", default=1.0))

    @property
    def insert_order_step(self) -> float:
        """Transient order increment used while inserting or splitting."""
        return float(self.get("timing", "insert_order_step", default=0.1))

    @property
    def delete_gap_policy(self) -> str:
        """What happens to the gap left by a deleted fragment."""
        return self.get("editing", "delete_gap_policy", default="keep")

    @property
    def auto_select_suppress(self) -> float:
        """Seconds auto-selection stays off after a manual pick."""
        return float(self.get("regions", "auto_select_suppress", default=0.3))

    @property
    def clip_precision(self) -> int:
        """Decimal places written for clipBegin/clipEnd."""
        return int(self.get("export", "clip_precision", default=3))

    @property
    def waveform_peaks(self) -> int:
        """Number of min/max bins computed for a waveform."""
        return int(self.get("waveform", "peaks", default=2000))


config = Config()
