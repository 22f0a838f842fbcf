"""
Configuration loading for the translation pipeline.

Settings come from three layers, later layers winning:

1. ``DEFAULT_CONFIG`` below
2. ``<project root>/simplify.yaml``
3. environment variables (``.env`` in the project root is loaded first)

Variant and model configuration documents are JSON files owned by the host
and read through ``VariantConfigStore``.

Usage:
    cfg = get_config(Path("/srv/site"))
    paths = StoragePaths.from_config(cfg)
    store = VariantConfigStore(paths.config_dir)
    variant = store.load_variant("de-x-ls")
"""

from __future__ import annotations

import copy
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from .errors import SimplifyError
from .logging_utils import log
from .models.provider import ModelConfig
from .models.variant import PageMode, VariantConfig

SETTINGS_FILENAME = "simplify.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "paths": {
        "data": "logs/simplify",
        "config": "config/simplify",
        "content": "content",
        "rules": "rules",
    },
    "logging": {"level": "INFO"},
    "worker": {
        "retry_limit": 3,
        "field_delay_seconds": 2,
        "rate_limit_wait_seconds": 30,
        "retry_wait_seconds": 5,
        "lock_attempts": 3,
        "lock_retry_delay_seconds": 5,
        "lock_max_age_seconds": 600,
        "stuck_job_minutes": 5,
        "dispatch_mode": "background",
        "python": None,
    },
    # Reliability > latency: providers get a long read timeout
    "http": {"timeout": 120, "connect_timeout": 10, "retries": 3},
    "providers": {
        "openai": {"api_key": "", "endpoint": "https://api.openai.com/v1"},
        "anthropic": {"api_key": "", "endpoint": "https://api.anthropic.com/v1/messages"},
        "gemini": {"api_key": "", "endpoint": "https://generativelanguage.googleapis.com/v1beta"},
        "mistral": {"api_key": "", "endpoint": "https://api.mistral.ai/v1"},
    },
}

API_KEY_ENV_VARS = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
}


class ConfigError(SimplifyError):
    """Settings or configuration documents cannot be loaded."""

    pass


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_config(project_root: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load settings for a project root.

    Args:
        project_root: Host project directory (defaults to ``SIMPLIFY_ROOT`` or cwd)

    Returns:
        Merged settings dictionary with ``project_root`` set

    Raises:
        ConfigError: If the root does not exist or the YAML file is invalid
    """
    root = Path(project_root or os.environ.get("SIMPLIFY_ROOT") or Path.cwd()).resolve()
    if not root.is_dir():
        raise ConfigError(f"Project root not found: {root}")

    load_dotenv(root / ".env")

    cfg = copy.deepcopy(DEFAULT_CONFIG)
    settings_path = root / SETTINGS_FILENAME
    if settings_path.exists():
        try:
            data = yaml.safe_load(settings_path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid settings file {settings_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {settings_path} must contain a mapping")
        cfg = _deep_merge(cfg, data)

    for provider_id, env_var in API_KEY_ENV_VARS.items():
        value = os.environ.get(env_var)
        if value:
            cfg["providers"].setdefault(provider_id, {})["api_key"] = value

    mode = os.environ.get("SIMPLIFY_DISPATCH_MODE")
    if mode:
        cfg["worker"]["dispatch_mode"] = mode
    level = os.environ.get("SIMPLIFY_LOG_LEVEL")
    if level:
        cfg["logging"]["level"] = level

    cfg["project_root"] = str(root)
    return cfg


@dataclass(frozen=True)
class StoragePaths:
    """Directory layout derived from settings."""

    root: Path
    data_dir: Path
    config_dir: Path
    content_dir: Path
    rules_dir: Path

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> StoragePaths:
        root = Path(cfg["project_root"])
        paths = cfg.get("paths") or {}

        def resolve(key: str) -> Path:
            p = Path(paths.get(key) or DEFAULT_CONFIG["paths"][key])
            return p if p.is_absolute() else root / p

        return cls(
            root=root,
            data_dir=resolve("data"),
            config_dir=resolve("config"),
            content_dir=resolve("content"),
            rules_dir=resolve("rules"),
        )

    @property
    def queue_dir(self) -> Path:
        return self.data_dir / "queues"

    @property
    def db_dir(self) -> Path:
        return self.data_dir / "db"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @property
    def lock_path(self) -> Path:
        return self.queue_dir / ".worker.lock"

    def worker_log_dir(self, variant_code: str) -> Path:
        return self.log_dir / "workers" / variant_code


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        log(f"Unreadable config document {path}: {e}", level="warning")
        return None
    return data if isinstance(data, dict) else None


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)


class VariantConfigStore:
    """
    Read-mostly access to variant and model configuration documents.

    Layout under ``config_dir``:
        <variant>.json              variant config (e.g. de-x-ls.json)
        <source language>.json      project document with ``project_prompt``
        <provider>/<model>.json     model configs (e.g. openai/gpt-4o.json)
    """

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)

    def variant_path(self, variant_code: str) -> Path:
        return self.config_dir / f"{variant_code}.json"

    def load_variant(self, variant_code: str) -> Optional[VariantConfig]:
        """Load a variant config with the project prompt of its source language merged in."""
        data = _read_json(self.variant_path(variant_code))
        if data is None:
            return None
        data.setdefault("language_code", variant_code)

        source_language = data.get("source_language")
        if source_language and not data.get("project_prompt"):
            project = _read_json(self.config_dir / f"{source_language}.json") or {}
            data["project_prompt"] = project.get("project_prompt") or ""

        try:
            return VariantConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid variant config {variant_code}: {e}") from e

    def save_page_mode(self, variant_code: str, page_uuid: str, mode: PageMode) -> bool:
        """Write back only ``pages[].mode`` for one page. False if the variant is unknown."""
        path = self.variant_path(variant_code)
        data = _read_json(path)
        if data is None:
            return False
        pages: List[Dict[str, Any]] = data.get("pages") or []
        mode_value = PageMode(mode).value
        for entry in pages:
            if entry.get("uuid") == page_uuid:
                entry["mode"] = mode_value
                break
        else:
            pages.append({"uuid": page_uuid, "mode": mode_value})
        data["pages"] = pages
        _write_json(path, data)
        return True

    def load_model_config(self, config_id: Optional[str]) -> Optional[ModelConfig]:
        if not config_id:
            return None
        data = _read_json(self.config_dir / f"{config_id}.json")
        if data is None:
            return None
        try:
            return ModelConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid model config {config_id}: {e}") from e

    def save_model_config(self, model_config: ModelConfig) -> Path:
        path = self.config_dir / f"{model_config.config_id}.json"
        _write_json(path, model_config.model_dump(mode="json", exclude_none=True))
        return path
