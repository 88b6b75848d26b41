"""
Configuration for conflictgen

Loaded from a YAML file and overridden by environment variables:

    CONFLICTGEN_CONFIG     Path of the config file
    CONFLICTGEN_BACKEND    cosmos | memory
    CONFLICTGEN_ENDPOINT   Account endpoint
    CONFLICTGEN_KEY        Master key
    CONFLICTGEN_REGIONS    Write regions, semicolon separated
"""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, List, Dict, Any
import logging

import yaml

from .errors import ConfigError
from .models import CollectionRef, CollectionSpec, ConflictKind, ResolutionMode

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".conflictgen"
DEFAULT_CONFIG_PATH = DEFAULT_CONFIG_DIR / "config.yaml"

BACKENDS = ("cosmos", "memory")

# Replication wait after the seeding insert, per conflict kind
DEFAULT_SEED_DELAYS = {
    ConflictKind.INSERT: 0.0,
    ConflictKind.UPDATE: 2.0,
    ConflictKind.DELETE: 1.0,
}

CONFIG_TEMPLATE = """# conflictgen configuration
# Multi-region write conflict generator

store:
  backend: cosmos  # or memory
  endpoint: https://<account>.documents.azure.com:443/
  # key: ${CONFLICTGEN_KEY}  # Set via environment variable
  database: MultiMasterDemo
  regions:
    - West US 2
    - North Europe
    - Southeast Asia
  throughput: 9900
  provision_delay: 5.0  # seconds to wait after creating each collection

collections:
  lww: LwwCollection       # LastWriterWins on /userdefinedid
  custom: AsyncCollection  # Custom (manual) resolution

campaign:
  seed_delay: null    # null = 2s for update, 1s for delete
  settle_delay: 1.0
  max_rounds: null    # null = run until a conflict is confirmed
  seed: null          # random seed for record ids

memory:
  replication_lag: 0.25
  latency: 0.01
"""


@dataclass
class StoreSettings:
    backend: str = "cosmos"
    endpoint: Optional[str] = None
    key: Optional[str] = None
    database: str = "MultiMasterDemo"
    regions: List[str] = field(default_factory=list)
    throughput: Optional[int] = 9900
    provision_delay: float = 5.0
    timeout: float = 30.0


@dataclass
class CollectionSettings:
    lww: str = "LwwCollection"
    custom: str = "AsyncCollection"


@dataclass
class CampaignSettings:
    seed_delay: Optional[float] = None
    settle_delay: float = 1.0
    max_rounds: Optional[int] = None
    seed: Optional[int] = None

    def seed_delay_for(self, kind: ConflictKind) -> float:
        if self.seed_delay is not None:
            return self.seed_delay
        return DEFAULT_SEED_DELAYS[kind]


@dataclass
class MemorySettings:
    replication_lag: float = 0.25
    latency: float = 0.01


@dataclass
class ConflictGenConfig:
    """
    Full configuration.

    Example:
        config = ConflictGenConfig.load(Path("config.yaml"))
        config.validate()
        collection = config.collection_ref("custom")
    """
    store: StoreSettings = field(default_factory=StoreSettings)
    collections: CollectionSettings = field(default_factory=CollectionSettings)
    campaign: CampaignSettings = field(default_factory=CampaignSettings)
    memory: MemorySettings = field(default_factory=MemorySettings)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ConflictGenConfig":
        data = data or {}

        def section(name: str, settings_cls):
            raw = data.get(name) or {}
            if not isinstance(raw, dict):
                raise ConfigError(f"Config section '{name}' must be a mapping")
            known = settings_cls.__dataclass_fields__
            unknown = set(raw) - set(known)
            if unknown:
                logger.warning(f"Ignoring unknown keys in '{name}': {', '.join(sorted(unknown))}")
            return settings_cls(**{k: v for k, v in raw.items() if k in known})

        config = cls(
            store=section("store", StoreSettings),
            collections=section("collections", CollectionSettings),
            campaign=section("campaign", CampaignSettings),
            memory=section("memory", MemorySettings),
        )
        if isinstance(config.store.regions, str):
            config.store.regions = _split_regions(config.store.regions)
        return config

    @classmethod
    def load(cls, path: Optional[Path] = None, apply_env: bool = True) -> "ConflictGenConfig":
        """
        Load configuration from YAML.

        Priority: explicit path > CONFLICTGEN_CONFIG env var > default path.
        A missing file yields defaults (plus environment overrides).
        """
        path = resolve_config_path(path)
        data: Dict[str, Any] = {}
        if path.exists():
            try:
                data = yaml.safe_load(path.read_text()) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}")
            logger.debug(f"Loaded configuration from {path}")
        else:
            logger.debug(f"No configuration at {path}, using defaults")

        config = cls.from_dict(data)
        if apply_env:
            config.apply_env()
        return config

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> None:
        env = os.environ if environ is None else environ
        if env.get("CONFLICTGEN_BACKEND"):
            self.store.backend = env["CONFLICTGEN_BACKEND"]
        if env.get("CONFLICTGEN_ENDPOINT"):
            self.store.endpoint = env["CONFLICTGEN_ENDPOINT"]
        if env.get("CONFLICTGEN_KEY"):
            self.store.key = env["CONFLICTGEN_KEY"]
        if env.get("CONFLICTGEN_REGIONS"):
            self.store.regions = _split_regions(env["CONFLICTGEN_REGIONS"])

    def validate(self) -> None:
        """
        Raises:
            ConfigError: If the configuration cannot drive a campaign
        """
        if self.store.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend '{self.store.backend}' "
                              f"(expected one of {', '.join(BACKENDS)})")
        if not self.store.regions:
            raise ConfigError("At least one write region is required (store.regions)")
        if self.store.backend == "cosmos":
            if not self.store.endpoint:
                raise ConfigError("store.endpoint is required for the cosmos backend")
            if not self.store.key:
                raise ConfigError("Master key required: set CONFLICTGEN_KEY or store.key")
        if self.campaign.settle_delay < 0:
            raise ConfigError("campaign.settle_delay cannot be negative")
        if self.campaign.seed_delay is not None and self.campaign.seed_delay < 0:
            raise ConfigError("campaign.seed_delay cannot be negative")
        if self.campaign.max_rounds is not None and self.campaign.max_rounds < 0:
            raise ConfigError("campaign.max_rounds cannot be negative")

    def collection_ref(self, which: str) -> CollectionRef:
        if which == "lww":
            return CollectionRef(self.store.database, self.collections.lww)
        if which == "custom":
            return CollectionRef(self.store.database, self.collections.custom)
        raise ConfigError(f"Unknown collection '{which}' (expected lww or custom)")

    def collection_specs(self) -> List[CollectionSpec]:
        return [
            CollectionSpec(self.collections.lww, ResolutionMode.LAST_WRITER_WINS),
            CollectionSpec(self.collections.custom, ResolutionMode.CUSTOM, resolution_path=None),
        ]

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact and data["store"].get("key"):
            data["store"]["key"] = "***"
        return data


def resolve_config_path(path: Optional[Path] = None) -> Path:
    if path:
        return Path(path)
    env_path = os.getenv("CONFLICTGEN_CONFIG")
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _split_regions(value: str) -> List[str]:
    return [r.strip() for r in value.split(";") if r.strip()]
