"""
SolarTrack configuration -- where things live and how the engine behaves.

Read from ``<home>/config/config.yaml``. A missing or broken file never
stops the client; it falls back to defaults and says so in the log.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

from . import SOLARTRACK_HOME

logger = logging.getLogger("solartrack.config")

CONFIG_FILE = Path("config") / "config.yaml"


class SolarTrackConfig(BaseModel):
    """Client configuration for one SolarTrack home."""

    account_seed: str = "solartrack-dev"
    chain_id: int = 31337
    deployments_dir: Optional[Path] = None
    contract_name: str = "SolarTrackManager"
    signature_duration_days: int = 365
    encrypt_yield_seconds: float = 0.1
    leaderboard_limit: int = 100
    calendar_window_days: int = 35
    value_bits: int = 32
    log_level: str = "WARNING"

    @property
    def max_value(self) -> int:
        """Largest value the ledger's encrypted field can hold."""
        return 2**self.value_bits - 1


def resolve_home(home: Optional[Path] = None) -> Path:
    """Expand the SolarTrack home directory."""
    return Path(home or SOLARTRACK_HOME).expanduser()


def load_config(home: Optional[Path] = None) -> SolarTrackConfig:
    """Load configuration from disk.

    Args:
        home: SolarTrack home. Defaults to $SOLARTRACK_HOME or ~/.solartrack.

    Returns:
        SolarTrackConfig: Parsed config, or defaults when unreadable.
    """
    home_path = resolve_home(home)
    config_file = home_path / CONFIG_FILE
    config = SolarTrackConfig()
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            config = SolarTrackConfig(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)

    if config.deployments_dir is None:
        config.deployments_dir = home_path / "deployments"
    return config


def save_config(config: SolarTrackConfig, home: Optional[Path] = None) -> Path:
    """Persist configuration to ``<home>/config/config.yaml``.

    Returns:
        Path: The written config file.
    """
    config_file = resolve_home(home) / CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json", exclude_none=True)
    config_file.write_text(
        yaml.dump(data, default_flow_style=False), encoding="utf-8"
    )
    return config_file
