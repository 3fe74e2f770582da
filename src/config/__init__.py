"""Configuration loading for the kit telemetry pipeline.

Configuration is read from a single YAML file, config/config.yaml by default
(override with the KIT_PIPELINE_CONFIG environment variable or an explicit
path), with ${VAR} / ${VAR:-default} environment expansion.

Usage:
    >>> from config import get_config, load_config
    >>> config = load_config()
    >>> config.source.type
    'memory'
    >>> config.dedup.window_seconds
    600.0

Settings priority (highest to lowest):
    1. Overrides passed to load_config()
    2. YAML values (after environment expansion)
    3. Dataclass defaults

See config.config for the section dataclasses and the validation CLI.
"""

from config.config import (
    AlertSettings,
    CheckpointSettings,
    ClassificationSettings,
    DedupSettings,
    LoggingSettings,
    ObservabilitySettings,
    PipelineSettings,
    SourceSettings,
    StoreSettings,
    TelemetryConfig,
    TimeoutSettings,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "load_config",
    "get_config",
    "set_config",
    "reset_config",
    "TelemetryConfig",
    "PipelineSettings",
    "SourceSettings",
    "CheckpointSettings",
    "DedupSettings",
    "AlertSettings",
    "StoreSettings",
    "TimeoutSettings",
    "ClassificationSettings",
    "ObservabilitySettings",
    "LoggingSettings",
]
