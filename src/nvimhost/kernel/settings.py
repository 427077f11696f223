"""Settings storage for nvimhost.

Settings are stored in settings.yaml under `config_dir()` and validated against
`EditorSettings`. Keys that fail validation fall back to their defaults so a
single bad value never disables the whole configuration.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml  # type: ignore
from pydantic import ValidationError

from ..contracts.v1 import EditorSettings
from ..util.fs import atomic_write_text

logger = logging.getLogger("nvimhost.settings")


HOME_ENV = "NVIMHOST_HOME"


def config_dir() -> Path:
    """$NVIMHOST_HOME, else the platform's per-user config directory."""
    override = os.environ.get(HOME_ENV, "").strip()
    if override:
        return Path(override).expanduser().resolve()
    if os.name == "nt":
        base = os.environ.get("APPDATA", "").strip()
        return (Path(base) if base else Path.home() / "AppData" / "Roaming") / "nvimhost"
    base = os.environ.get("XDG_CONFIG_HOME", "").strip()
    return (Path(base).expanduser() if base else Path.home() / ".config") / "nvimhost"


def settings_path() -> Path:
    d = config_dir()
    d.mkdir(parents=True, exist_ok=True)
    return d / "settings.yaml"


def _load_doc(p: Path) -> Dict[str, Any]:
    if not p.exists():
        return {}
    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Unreadable settings file {p}: {e}")
        return {}
    return doc if isinstance(doc, dict) else {}


def coerce_settings(doc: Dict[str, Any]) -> EditorSettings:
    try:
        return EditorSettings.model_validate(doc)
    except ValidationError as e:
        bad = {str(err["loc"][0]) for err in e.errors() if err.get("loc")}
        logger.warning(f"Ignoring invalid settings keys: {sorted(bad)}")
        return EditorSettings.model_validate({k: v for k, v in doc.items() if k not in bad})


def load_settings() -> EditorSettings:
    """Load settings.yaml from `config_dir()` (defaults if absent)."""
    return coerce_settings(_load_doc(settings_path()))


def save_settings(settings: EditorSettings) -> None:
    p = settings_path()
    atomic_write_text(p, yaml.safe_dump(settings.model_dump(), allow_unicode=True, sort_keys=False))


def update_settings(**changes: Any) -> EditorSettings:
    """Apply changes on top of the stored settings and persist the result."""
    doc = load_settings().model_dump()
    doc.update(changes)
    settings = EditorSettings.model_validate(doc)
    save_settings(settings)
    return settings
