"""
Configuration loader for service profiles and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

import yaml
from dotenv import load_dotenv

from src.search.ranker import SearchConfig
from src.spatial.cluster_index import ClusterIndexConfig
from src.store.loader import SourceConfig


class ConfigLoader:
    """Load and manage configuration from YAML files and environment."""

    CONFIG_DIR = Path(__file__).parent.parent.parent / "configs"
    DEFAULT_PROFILE = "default"

    @classmethod
    def load_profile(cls, profile_name: str = DEFAULT_PROFILE) -> Dict[str, Any]:
        """
        Load a service profile.

        Args:
            profile_name: Name of the profile (default, high-detail)

        Returns:
            Dictionary with configuration values

        Raises:
            FileNotFoundError: If profile doesn't exist
        """
        profile_path = cls.CONFIG_DIR / f"{profile_name}.yaml"

        if not profile_path.exists():
            available = sorted(f.stem for f in cls.CONFIG_DIR.glob("*.yaml"))
            raise FileNotFoundError(
                f"Profile '{profile_name}' not found. Available profiles: {', '.join(available)}"
            )

        with open(profile_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    @classmethod
    def get_profile_from_env(cls) -> Optional[str]:
        """Get profile name from MAP_PROFILE environment variable."""
        return os.getenv("MAP_PROFILE")

    @classmethod
    def load_default_or_env_profile(cls) -> Dict[str, Any]:
        """
        Load the profile named by MAP_PROFILE, or the default profile.

        Returns:
            Configuration dictionary
        """
        profile = cls.get_profile_from_env() or cls.DEFAULT_PROFILE
        return cls.load_profile(profile)


def _resolve_location(location: str) -> str:
    if location.startswith(("http://", "https://")):
        return location
    path = Path(location)
    if not path.is_absolute():
        path = ConfigLoader.CONFIG_DIR.parent / path
    return str(path)


def _source_config(raw: Optional[Dict[str, Any]], override: Optional[str], category: str) -> Optional[SourceConfig]:
    raw = dict(raw or {})
    if override:
        raw["location"] = override
    if not raw.get("location"):
        return None
    return SourceConfig(
        location=_resolve_location(str(raw["location"])),
        category=raw.get("category", category),
        id_field=raw.get("id_field", "id"),
        generate_ids=bool(raw.get("generate_ids", False)),
        timeout_sec=float(raw.get("timeout_sec", 10.0)),
    )


@dataclass
class ServiceSettings:
    """Typed view over a profile plus environment overrides."""

    entities: SourceConfig
    places: Optional[SourceConfig] = None
    index: ClusterIndexConfig = field(default_factory=ClusterIndexConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    rebuild_cooldown_sec: float = 5.0
    search_cache_size: int = 1024

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "ServiceSettings":
        """
        Build settings from a profile dictionary.

        ``ENTITY_SOURCE`` and ``PLACE_SOURCE`` override the profile's source
        locations (file path or http(s) URL).

        Raises:
            ValueError: If no entity source is configured or a section is invalid
        """
        sources = profile.get("sources", {}) or {}
        entities = _source_config(sources.get("entities"), os.getenv("ENTITY_SOURCE"), "entity")
        if entities is None:
            raise ValueError("No entity source configured (sources.entities.location or ENTITY_SOURCE)")
        places = _source_config(sources.get("places"), os.getenv("PLACE_SOURCE"), "place")

        index = ClusterIndexConfig(**(profile.get("index") or {}))
        index.validate()
        search = SearchConfig(**(profile.get("search") or {}))
        search.validate()

        service_cfg = profile.get("service", {}) or {}
        return cls(
            entities=entities,
            places=places,
            index=index,
            search=search,
            rebuild_cooldown_sec=float(service_cfg.get("rebuild_cooldown_sec", 5.0)),
            search_cache_size=int(service_cfg.get("search_cache_size", 1024)),
        )

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """Load ``.env``, then the MAP_PROFILE (or default) profile."""
        load_dotenv()
        return cls.from_profile(ConfigLoader.load_default_or_env_profile())


def get_config() -> Dict[str, Any]:
    """Convenience function to get current configuration."""
    return ConfigLoader.load_default_or_env_profile()
