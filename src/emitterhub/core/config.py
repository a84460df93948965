"""
Configuration Management for EmitterHub.

Uses Pydantic Settings for type-safe configuration with environment
variable support and YAML file loading.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml

ARTNET_PORT = 6454


class ReceiverConfig(BaseModel):
    """eHuB receive socket configuration."""
    listen_ip: str = "0.0.0.0"
    listen_port: int = Field(default=8765, ge=0, le=65535)  # 0 binds an ephemeral port
    target_universe: int = Field(default=0, ge=0, le=255)
    buffer_size: int = 65535
    receive_timeout_s: float = 0.5  # recv timeout so the stop signal is observed
    queue_size: int = 1024
    start_timeout_s: float = 2.0


class SenderConfig(BaseModel):
    """Art-Net transmission and pacing configuration."""
    artnet_port: int = ARTNET_PORT
    broadcast: bool = False
    max_packets_per_second: float = Field(default=8000.0, gt=0)
    destination_min_gap_s: float = Field(default=0.0002, ge=0)
    max_defer_s: float = Field(default=0.02, ge=0)
    max_concurrent_sends: int = Field(default=4, ge=1, le=64)
    send_timeout_s: float = 0.1
    failure_backoff_s: float = 1.0
    dedupe_identical: bool = True

    # Congestion heuristic
    congestion_failure_threshold: int = 5
    congestion_rate_threshold: float = 20000.0
    congestion_cooldown_s: float = 2.0
    congestion_penalty_s: float = 0.001

    @property
    def global_min_interval_s(self) -> float:
        return 1.0 / self.max_packets_per_second


class RouterConfig(BaseModel):
    """Tick loop configuration."""
    tick_rate_hz: float = Field(default=40.0, gt=0)
    tick_timeout_s: float = 0.1
    full_resync_interval_s: Optional[float] = 1.0
    full_resync_every_ticks: Optional[int] = None
    patch_enabled: bool = True
    stats_log_interval_s: float = 1.0
    event_queue_size: int = 256

    @property
    def tick_interval_s(self) -> float:
        return 1.0 / self.tick_rate_hz


class MappingConfig(BaseModel):
    """Paths of the CSV files loaded at startup."""
    mapping_csv: Optional[Path] = None
    patch_csv: Optional[Path] = None


class Settings(BaseSettings):
    """
    Main application settings.

    Can be configured via:
    - Environment variables (prefixed with EMITTERHUB_)
    - YAML config file
    - Direct instantiation
    """

    receiver: ReceiverConfig = Field(default_factory=ReceiverConfig)
    sender: SenderConfig = Field(default_factory=SenderConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    mapping: MappingConfig = Field(default_factory=MappingConfig)

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="EMITTERHUB_",
        env_nested_delimiter="__",
    )

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save settings to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(mode="json"), f, default_flow_style=False)
