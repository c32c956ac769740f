"""
Tunable configuration access with dot-notation lookup.

Features:
- Hierarchical config access with dot notation (e.g., 'presence.search.default_page_size')
- YAML defaults loaded from the config/ directory
- Hot reload by re-reading the YAML tree
- Read metrics (hits, misses, errors)

Tunables live here; connection settings live in Config.
"""

from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from presence.core.config.config import Config
from presence.core.logging.logger import get_logger

logger = get_logger(__name__)


class ConfigManager:
    """
    YAML-backed tunable configuration with dot-notation access.

    Example:
        >>> ConfigManager.get("presence.search.default_page_size", 20)
        20
    """

    _cache: Dict[str, Any] = {}
    _initialized: bool = False
    _config_dir: Optional[Path] = None

    _metrics = {
        "gets": 0,
        "cache_hits": 0,
        "cache_misses": 0,
        "reloads": 0,
        "errors": 0,
    }

    # =========================================================================
    # INITIALIZATION / RELOAD
    # =========================================================================

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> Dict[str, Any]:
        """
        Recursively load all YAML files under config_dir into one mapping.

        Files are merged in sorted path order so later files override
        earlier top-level keys deterministically. A broken file is logged
        and skipped; the remaining files still load.
        """
        merged: Dict[str, Any] = {}

        if not config_dir.exists():
            logger.warning(
                "Config directory not found, using caller defaults",
                extra={"config_dir": str(config_dir)},
            )
            return merged

        yaml_files = sorted(list(config_dir.rglob("*.yaml")) + list(config_dir.rglob("*.yml")))
        loaded_count = 0

        for yaml_file in yaml_files:
            try:
                with open(yaml_file, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                cls._metrics["errors"] += 1
                logger.warning(
                    f"Failed to load YAML config {yaml_file.name}: {e}",
                    extra={"file": str(yaml_file), "error": str(e)},
                )
                continue

            if isinstance(data, dict):
                merged.update(data)
                loaded_count += 1
                logger.debug(f"Loaded YAML config: {yaml_file.relative_to(config_dir)}")

        logger.info(
            f"Loaded {loaded_count} YAML config files",
            extra={"yaml_count": loaded_count, "total_keys": len(merged)},
        )
        return merged

    @classmethod
    async def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """Load YAML tunables. Safe to call more than once."""
        cls._config_dir = config_dir or (Config.PROJECT_ROOT / "config")
        cls._cache = cls._load_yaml_configs(cls._config_dir)
        cls._initialized = True
        logger.info(
            "ConfigManager initialized",
            extra={"config_count": len(cls._cache), "config_dir": str(cls._config_dir)},
        )

    @classmethod
    def reload(cls) -> None:
        """Re-read the YAML tree and swap the cache in one assignment."""
        directory = cls._config_dir or (Config.PROJECT_ROOT / "config")
        cls._cache = cls._load_yaml_configs(directory)
        cls._metrics["reloads"] += 1
        logger.info("Tunables reloaded", extra={"config_dir": str(directory), "top_level_keys": len(cls._cache)})

    @classmethod
    def load_mapping(cls, values: Dict[str, Any]) -> None:
        """Replace the cache with an explicit mapping (embedding and tests)."""
        cls._cache = dict(values)
        cls._initialized = True

    @classmethod
    async def shutdown(cls) -> None:
        logger.info("ConfigManager shutdown complete", extra={"reads": cls.get_metrics()})
        cls._cache = {}
        cls._initialized = False

    # =========================================================================
    # PUBLIC METHODS
    # =========================================================================

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve config value by dot notation path.

        Args:
            key: Dot-notation config path (e.g., 'presence.query.timeout_seconds')
            default: Value returned when the path is missing

        Returns:
            Config value or default
        """
        cls._metrics["gets"] += 1

        value: Any = cls._cache
        for part in key.split("."):
            if not isinstance(value, dict) or part not in value:
                cls._metrics["cache_misses"] += 1
                return default
            value = value[part]

        cls._metrics["cache_hits"] += 1
        return default if value is None else value

    @classmethod
    def get_int(cls, key: str, default: int) -> int:
        value = cls.get(key, default)
        if isinstance(value, bool) or not isinstance(value, int):
            logger.warning(
                "Config value is not an integer, using default",
                extra={"config_key": key, "value": repr(value), "default": default},
            )
            return default
        return value

    @classmethod
    def get_float(cls, key: str, default: float) -> float:
        value = cls.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning(
                "Config value is not numeric, using default",
                extra={"config_key": key, "value": repr(value), "default": default},
            )
            return default
        return float(value)

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        gets = cls._metrics["gets"]
        hit_rate = (cls._metrics["cache_hits"] / gets * 100) if gets else 0.0
        return {**cls._metrics, "hit_rate": round(hit_rate, 2), "initialized": cls._initialized}
