"""Engine Configuration Module.

Provides layered configuration for the meshpatch engine. Settings are
resolved in this order, later layers winning:

1. Built-in defaults
2. A YAML or JSON file (explicit ``path`` or ``MESHPATCH_CONFIG``)
3. Environment variables prefixed with ``MESHPATCH_``
4. Programmatic overrides

Example:
    # Defaults plus environment
    config = load_engine_config()

    # Override via environment
    # MESHPATCH_INTEGRITY_MODE=warn

    # Override programmatically
    config = load_engine_config(overrides={"process_timeout_s": 60})
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from meshpatch.error_handling import ConfigurationError

from .env import parse_bool_env

logger = logging.getLogger(__name__)

ENV_PREFIX = "MESHPATCH_"
CONFIG_PATH_ENV = "MESHPATCH_CONFIG"


@dataclass(frozen=True)
class EngineConfig:
    """Resolved engine settings."""
    manifest_cache_dir: Path = Path(".meshpatch/manifests")
    staging_dir: Path = Path(".meshpatch/staging")
    output_dir: Path = Path(".meshpatch/derived")
    integrity_mode: str = "strict"
    diff_backend: str = "bsdiff4"
    hdiffz_path: str = "hdiffz"
    hpatchz_path: str = "hpatchz"
    diff_options: str = "-m-6 -SD -c-zstd-21-24 -d"
    process_timeout_s: float = 300.0
    poll_interval_s: float = 0.1
    progress_interval_s: float = 5.0
    strict_topology: bool = False
    strict_correspondence: bool = False
    verify_target_hash: bool = True

    @property
    def integrity_warn_only(self) -> bool:
        return self.integrity_mode == "warn"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("manifest_cache_dir", "staging_dir", "output_dir"):
            data[key] = str(data[key])
        return data


class ConfigLoader:
    """Reads and layers engine configuration sources."""

    @classmethod
    def _load_file(cls, path: Path) -> Dict[str, Any]:
        """
        Load a YAML or JSON configuration file.

        Raises:
            ConfigurationError: If the file is missing or cannot be parsed.
        """
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", config_key=CONFIG_PATH_ENV)

        text = path.read_text(encoding="utf-8")
        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Invalid configuration in {path}: {e}", cause=e) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration in {path} must be a mapping")
        # Allow the settings to be nested under a top-level "meshpatch" key.
        if set(data) == {"meshpatch"} and isinstance(data["meshpatch"], dict):
            data = data["meshpatch"]
        return data

    @classmethod
    def _apply_env_overrides(
        cls,
        config: Dict[str, Any],
        prefix: str = ENV_PREFIX,
        env: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """Apply environment variable overrides.

        Each setting maps to one variable:
        MESHPATCH_PROCESS_TIMEOUT_S=60 -> config["process_timeout_s"] = "60"

        Raw strings are left for the schema to coerce.
        """
        env = os.environ if env is None else env
        for item in fields(EngineConfig):
            env_key = f"{prefix}{item.name.upper()}"
            value = env.get(env_key)
            if value is None or value == "":
                continue
            config[item.name] = value
        return config

    @classmethod
    def _deep_merge(cls, base: Dict, override: Dict) -> Dict:
        """Deep merge override into base dict."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls._deep_merge(result[key], value)
            else:
                result[key] = value
        return result

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> EngineConfig:
        from meshpatch.validation.schemas import EngineConfigSchema

        env = dict(os.environ) if env is None else env
        config: Dict[str, Any] = {}

        config_path = path if path is not None else env.get(CONFIG_PATH_ENV)
        if config_path:
            config = cls._deep_merge(config, cls._load_file(Path(config_path)))
            logger.debug("Loaded engine config file %s", config_path)

        config = cls._apply_env_overrides(config, env=env)
        if overrides:
            config = cls._deep_merge(config, overrides)

        try:
            validated = EngineConfigSchema.model_validate(config)
        except PydanticValidationError as e:
            first = e.errors()[0] if e.errors() else {}
            key = ".".join(str(part) for part in first.get("loc", ())) or None
            raise ConfigurationError(
                f"Engine configuration validation failed: {e}",
                config_key=key,
                cause=e,
            ) from e

        return EngineConfig(
            manifest_cache_dir=validated.manifest_cache_dir,
            staging_dir=validated.staging_dir,
            output_dir=validated.output_dir,
            integrity_mode=validated.integrity_mode.value,
            diff_backend=validated.diff_backend.value,
            hdiffz_path=validated.hdiffz_path,
            hpatchz_path=validated.hpatchz_path,
            diff_options=validated.diff_options,
            process_timeout_s=validated.process_timeout_s,
            poll_interval_s=validated.poll_interval_s,
            progress_interval_s=validated.progress_interval_s,
            strict_topology=validated.strict_topology,
            strict_correspondence=validated.strict_correspondence,
            verify_target_hash=validated.verify_target_hash,
        )


def load_engine_config(
    path: Optional[Union[str, Path]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> EngineConfig:
    """Convenience wrapper around ``ConfigLoader.load``."""
    return ConfigLoader.load(path=path, overrides=overrides)


__all__ = [
    "CONFIG_PATH_ENV",
    "ENV_PREFIX",
    "ConfigLoader",
    "EngineConfig",
    "load_engine_config",
    "parse_bool_env",
]
