"""Kit telemetry pipeline configuration from YAML file.

Loads from config/config.yaml with all settings in one place:
- Pipeline supervision and shutdown behaviour
- Stream source, checkpoint store, alert channel and document store backends
- Dedup window, timeouts, retry budgets and the severity policy
- Observability and logging settings

Environment variables ARE supported using ${VAR_NAME} and ${VAR_NAME:-default}
syntax in YAML files. KIT_PIPELINE_CONFIG overrides the default file path.
"""

import json
import logging
import os
import re
import sys
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return dict."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR_NAME} and ${VAR_NAME:-default} environment variables in config data."""
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        pattern = r"\$\{([^}:]+)(?::-(([^}]*))?)?\}"

        def replacer(match):
            var_name = match.group(1)
            default_value = match.group(2) if match.group(2) is not None else match.group(0)
            return os.getenv(var_name, default_value)

        return re.sub(pattern, replacer, data)
    else:
        return data


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge overlay into base dict."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


# Default config file: config/config.yaml in src/ directory
DEFAULT_CONFIG_FILE = Path(__file__).parent / "config.yaml"
CONFIG_PATH_ENV = "KIT_PIPELINE_CONFIG"


class _Section:
    """Mixin building a settings dataclass from a YAML mapping.

    Unknown keys are logged and ignored. Values are coerced to the type of
    the field default so strings from ${VAR} expansion become numbers/bools.
    """

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], section: str):
        data = data or {}
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(
                "Ignoring unknown keys in '%s' section: %s", section, ", ".join(unknown)
            )

        kwargs = {}
        defaults = cls()
        for name, value in data.items():
            if name not in known:
                continue
            default = getattr(defaults, name)
            kwargs[name] = _coerce(value, default, f"{section}.{name}")
        return cls(**kwargs)


def _coerce(value: Any, default: Any, key: str) -> Any:
    if value is None:
        return default
    try:
        if isinstance(default, bool):
            return _as_bool(value)
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
        if isinstance(default, list) and isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(default, list):
            return [str(item) for item in value]
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key}: cannot convert {value!r} ({e})") from e
    return value


@dataclass
class PipelineSettings(_Section):
    """Supervision and shutdown behaviour of the partition workers."""

    name: str = "kit_pipeline"
    worker_id_prefix: str = "kit-pipeline"
    # Empty list means every partition reported by the source
    partitions: List[str] = field(default_factory=list)
    on_permanent_error: str = "restart"  # restart | exit
    max_restarts: int = 5
    restart_backoff_seconds: float = 5.0
    shutdown_grace_seconds: float = 10.0


@dataclass
class SourceSettings(_Section):
    """Stream source backend and read behaviour."""

    type: str = "memory"  # memory | eventhub | kafka
    partition_count: int = 2
    retention_hours: int = 24
    max_batch_size: int = 100
    fetch_timeout_seconds: float = 1.0
    queue_size: int = 500
    read_max_attempts: int = 5
    read_base_delay_seconds: float = 0.5
    read_max_delay_seconds: float = 10.0

    # Event Hub
    eventhub_connection_string: str = ""
    eventhub_name: str = ""
    consumer_group: str = "$Default"
    transport: str = "amqp"  # amqp | websocket

    # Kafka
    bootstrap_servers: str = ""
    topic: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_username: str = ""
    sasl_password: str = ""


@dataclass
class CheckpointSettings(_Section):
    """Durable per-partition read positions."""

    type: str = "json"  # memory | json | blob
    path: str = "./data/checkpoints"
    blob_connection_string: str = ""
    container: str = "kit-checkpoints"
    checkpoint_interval: int = 1
    save_max_attempts: int = 3


@dataclass
class DedupSettings(_Section):
    """Bounded recency cache and optional shared coordination store."""

    window_seconds: float = 600.0
    max_entries: int = 100_000
    cleanup_interval_seconds: float = 60.0
    shared_store: str = "none"  # none | json | blob
    shared_path: str = "./data/dedup"
    blob_connection_string: str = ""
    container: str = "kit-dedup"


@dataclass
class AlertSettings(_Section):
    """Low-latency alert channel and its retry budget."""

    type: str = "memory"  # memory | eventhub | kafka
    connection_string: str = ""
    eventhub_name: str = ""
    bootstrap_servers: str = ""
    topic: str = ""
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = "PLAIN"
    sasl_username: str = ""
    sasl_password: str = ""
    max_attempts: int = 3
    base_delay_seconds: float = 0.2
    max_delay_seconds: float = 2.0


@dataclass
class StoreSettings(_Section):
    """Queryable event store partitioned by device."""

    type: str = "json"  # memory | json | blob
    path: str = "./data/events"
    blob_connection_string: str = ""
    container: str = "kit-events"
    consistency_level: str = "session"  # strong | session | eventual
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 30.0
    alarm_after_attempts: int = 5
    # 0 retries indefinitely; a positive bound raises PersistenceExhausted
    max_attempts: int = 0


@dataclass
class TimeoutSettings(_Section):
    """Per-call timeouts for every external operation (seconds)."""

    read_seconds: float = 10.0
    write_seconds: float = 10.0
    route_seconds: float = 5.0
    checkpoint_seconds: float = 10.0


@dataclass
class ClassificationSettings(_Section):
    """Severity policy identifier and its thresholds."""

    policy: str = "vitals_threshold"
    thresholds: Dict[str, float] = field(default_factory=dict)


@dataclass
class ObservabilitySettings(_Section):
    metrics_enabled: bool = True
    metrics_port: int = 9090
    health_enabled: bool = True
    health_port: int = 8080
    stats_interval_seconds: float = 30.0


@dataclass
class LoggingSettings(_Section):
    level: str = "INFO"
    log_dir: str = "logs"
    json_format: bool = True
    log_to_stdout: bool = False


VALID_SOURCE_TYPES = ["memory", "eventhub", "kafka"]
VALID_CHECKPOINT_TYPES = ["memory", "json", "blob"]
VALID_SHARED_DEDUP_TYPES = ["none", "json", "blob"]
VALID_ALERT_TYPES = ["memory", "eventhub", "kafka"]
VALID_STORE_TYPES = ["memory", "json", "blob"]
VALID_CONSISTENCY_LEVELS = ["strong", "session", "eventual"]
VALID_PERMANENT_ERROR_POLICIES = ["restart", "exit"]
VALID_TRANSPORTS = ["amqp", "websocket"]
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


@dataclass
class TelemetryConfig:
    """Kit telemetry pipeline configuration.

    Configuration structure:
        pipeline: {...}        # supervision, partitions, shutdown grace
        source: {...}          # stream backend (memory | eventhub | kafka)
        checkpoints: {...}     # durable offsets (memory | json | blob)
        dedup: {...}           # window, size bound, optional shared store
        alerts: {...}          # alert channel (memory | eventhub | kafka)
        store: {...}           # document store (memory | json | blob)
        timeouts: {...}        # per-call timeouts in seconds
        classification: {...}  # severity policy + thresholds
        observability: {...}   # prometheus + health server
        logging: {...}
    """

    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    source: SourceSettings = field(default_factory=SourceSettings)
    checkpoints: CheckpointSettings = field(default_factory=CheckpointSettings)
    dedup: DedupSettings = field(default_factory=DedupSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)
    store: StoreSettings = field(default_factory=StoreSettings)
    timeouts: TimeoutSettings = field(default_factory=TimeoutSettings)
    classification: ClassificationSettings = field(default_factory=ClassificationSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    SECTIONS = {
        "pipeline": PipelineSettings,
        "source": SourceSettings,
        "checkpoints": CheckpointSettings,
        "dedup": DedupSettings,
        "alerts": AlertSettings,
        "store": StoreSettings,
        "timeouts": TimeoutSettings,
        "classification": ClassificationSettings,
        "observability": ObservabilitySettings,
        "logging": LoggingSettings,
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TelemetryConfig":
        return cls(
            **{
                name: section_cls.from_dict(data.get(name), name)
                for name, section_cls in cls.SECTIONS.items()
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return {name: asdict(getattr(self, name)) for name in self.SECTIONS}

    def validate(self) -> None:
        """Validate configuration for correctness and constraints.

        Checks backend identifiers, required connection settings for the
        selected backends, and numeric ranges.
        """
        pipeline = asdict(self.pipeline)
        self._validate_enum(pipeline, "on_permanent_error", VALID_PERMANENT_ERROR_POLICIES, "pipeline")
        self._validate_min(pipeline, "max_restarts", 0, inclusive=True, context="pipeline")
        self._validate_min(pipeline, "restart_backoff_seconds", 0, inclusive=True, context="pipeline")
        self._validate_min(pipeline, "shutdown_grace_seconds", 0, inclusive=True, context="pipeline")

        self._validate_source(asdict(self.source))

        checkpoints = asdict(self.checkpoints)
        self._validate_enum(checkpoints, "type", VALID_CHECKPOINT_TYPES, "checkpoints")
        self._validate_min(checkpoints, "checkpoint_interval", 1, inclusive=True, context="checkpoints")
        self._validate_min(checkpoints, "save_max_attempts", 1, inclusive=True, context="checkpoints")
        if self.checkpoints.type == "blob":
            self._require(checkpoints, "blob_connection_string", "checkpoints")

        dedup = asdict(self.dedup)
        self._validate_min(dedup, "window_seconds", 0, inclusive=False, context="dedup")
        self._validate_min(dedup, "max_entries", 1, inclusive=True, context="dedup")
        self._validate_min(dedup, "cleanup_interval_seconds", 0, inclusive=False, context="dedup")
        self._validate_enum(dedup, "shared_store", VALID_SHARED_DEDUP_TYPES, "dedup")
        if self.dedup.shared_store == "blob":
            self._require(dedup, "blob_connection_string", "dedup")

        self._validate_alerts(asdict(self.alerts))

        store = asdict(self.store)
        self._validate_enum(store, "type", VALID_STORE_TYPES, "store")
        self._validate_enum(store, "consistency_level", VALID_CONSISTENCY_LEVELS, "store")
        self._validate_min(store, "base_delay_seconds", 0, inclusive=False, context="store")
        self._validate_min(store, "max_delay_seconds", 0, inclusive=False, context="store")
        self._validate_min(store, "alarm_after_attempts", 1, inclusive=True, context="store")
        self._validate_min(store, "max_attempts", 0, inclusive=True, context="store")
        if self.store.type == "blob":
            self._require(store, "blob_connection_string", "store")

        timeouts = asdict(self.timeouts)
        for key in timeouts:
            self._validate_min(timeouts, key, 0, inclusive=False, context="timeouts")

        observability = asdict(self.observability)
        self._validate_range(observability, "metrics_port", 1, 65535, "observability")
        self._validate_range(observability, "health_port", 1, 65535, "observability")
        self._validate_min(observability, "stats_interval_seconds", 0, inclusive=False, context="observability")

        self._validate_enum(
            {"level": self.logging.level.upper()}, "level", VALID_LOG_LEVELS, "logging"
        )

    def _validate_source(self, source: Dict[str, Any]) -> None:
        self._validate_enum(source, "type", VALID_SOURCE_TYPES, "source")
        self._validate_range(source, "partition_count", 1, 1024, "source")
        self._validate_min(source, "max_batch_size", 1, inclusive=True, context="source")
        self._validate_min(source, "fetch_timeout_seconds", 0, inclusive=False, context="source")
        self._validate_min(source, "queue_size", 1, inclusive=True, context="source")
        self._validate_min(source, "read_max_attempts", 1, inclusive=True, context="source")
        self._validate_enum(source, "transport", VALID_TRANSPORTS, "source")
        if source["type"] == "eventhub":
            self._require(source, "eventhub_connection_string", "source")
        elif source["type"] == "kafka":
            self._require(source, "bootstrap_servers", "source")
            self._require(source, "topic", "source")

    def _validate_alerts(self, alerts: Dict[str, Any]) -> None:
        self._validate_enum(alerts, "type", VALID_ALERT_TYPES, "alerts")
        self._validate_range(alerts, "max_attempts", 1, 20, "alerts")
        self._validate_min(alerts, "base_delay_seconds", 0, inclusive=False, context="alerts")
        self._validate_min(alerts, "max_delay_seconds", 0, inclusive=False, context="alerts")
        if alerts["type"] == "eventhub":
            self._require(alerts, "connection_string", "alerts")
        elif alerts["type"] == "kafka":
            self._require(alerts, "bootstrap_servers", "alerts")
            self._require(alerts, "topic", "alerts")

    @staticmethod
    def _require(settings: Dict[str, Any], key: str, context: str) -> None:
        value = settings.get(key)
        if not value or (isinstance(value, str) and value.startswith("${")):
            raise ValueError(f"{context}: {key} is required by the selected backend")

    @staticmethod
    def _validate_enum(
        settings: Dict[str, Any],
        key: str,
        valid_values: List[Any],
        context: str
    ) -> None:
        """Validate that a setting's value is in a list of valid values."""
        if key in settings and settings[key] not in valid_values:
            raise ValueError(
                f"{context}: {key} must be one of {valid_values}, "
                f"got '{settings[key]}'"
            )

    @staticmethod
    def _validate_min(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        inclusive: bool,
        context: str
    ) -> None:
        """Validate that a setting's value meets a minimum threshold."""
        if key in settings:
            value = settings[key]
            if inclusive and value < min_value:
                raise ValueError(
                    f"{context}: {key} must be >= {min_value}, got {value}"
                )
            elif not inclusive and value <= min_value:
                raise ValueError(
                    f"{context}: {key} must be > {min_value}, got {value}"
                )

    @staticmethod
    def _validate_range(
        settings: Dict[str, Any],
        key: str,
        min_value: float,
        max_value: float,
        context: str
    ) -> None:
        """Validate that a setting's value is within a range (inclusive)."""
        if key in settings:
            value = settings[key]
            if not (min_value <= value <= max_value):
                raise ValueError(
                    f"{context}: {key} must be between {min_value} and {max_value}, got {value}"
                )


def resolve_config_path(config_path: Optional[Path] = None) -> Path:
    if config_path is not None:
        return Path(config_path)
    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_FILE


def load_config(
    config_path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> TelemetryConfig:
    """Load pipeline configuration from config.yaml.

    Priority (highest to lowest): overrides, YAML values (after ${VAR}
    expansion), dataclass defaults.
    """
    config_path = resolve_config_path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"Expected file: config/config.yaml (or set {CONFIG_PATH_ENV})"
        )

    logger.info("Loading configuration from file: %s", config_path)
    yaml_data = _expand_env_vars(load_yaml(config_path))

    if overrides:
        logger.debug("Applying overrides: %s", list(overrides.keys()))
        yaml_data = _deep_merge(yaml_data, overrides)

    config = TelemetryConfig.from_dict(yaml_data)

    logger.debug(
        "Configuration loaded: source=%s, checkpoints=%s, alerts=%s, store=%s, policy=%s",
        config.source.type,
        config.checkpoints.type,
        config.alerts.type,
        config.store.type,
        config.classification.policy,
    )

    config.validate()
    logger.debug("Configuration validation passed")

    return config


_telemetry_config: Optional[TelemetryConfig] = None


def get_config() -> TelemetryConfig:
    """Get or load the singleton config instance."""
    global _telemetry_config
    if _telemetry_config is None:
        _telemetry_config = load_config()
    return _telemetry_config


def set_config(config: TelemetryConfig) -> None:
    """Set the singleton config instance (useful for testing)."""
    global _telemetry_config
    _telemetry_config = config


def reset_config() -> None:
    """Reset the singleton config instance (forces reload on next get_config() call)."""
    global _telemetry_config
    _telemetry_config = None


def _cli_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for config validation and debugging."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Kit Telemetry Pipeline Configuration Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Validate configuration
  python -m config.config --validate

  # Show merged configuration (defaults + YAML + env)
  python -m config.config --show-merged

  # Use custom config file
  python -m config.config --config /path/to/config.yaml --validate

  # JSON output for automation
  python -m config.config --validate --json
        """,
    )

    parser.add_argument(
        "--validate",
        action="store_true",
        help="Validate configuration structure and completeness",
    )
    parser.add_argument(
        "--show-merged",
        action="store_true",
        help="Display effective configuration as YAML",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=f"Path to config.yaml file (default: ${CONFIG_PATH_ENV} or src/config/config.yaml)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format instead of human-readable",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )

    if not args.validate and not args.show_merged:
        parser.print_help()
        return 0

    try:
        config = load_config(config_path=args.config)
        output: Dict[str, Any] = {}

        if args.validate:
            # Validation happens during load_config(), if we got here it passed
            if args.json:
                output["validation"] = {"passed": True, "errors": []}
            else:
                print("✓ Configuration validation passed")
                print(f"  - Source: {config.source.type}")
                print(f"  - Checkpoints: {config.checkpoints.type}")
                print(f"  - Alerts: {config.alerts.type}")
                print(f"  - Store: {config.store.type} ({config.store.consistency_level})")
                print(f"  - Severity policy: {config.classification.policy}")

        if args.show_merged:
            if args.json:
                output["merged_config"] = config.to_dict()
            else:
                print("\nConfiguration:")
                print("=" * 80)
                print(yaml.dump(config.to_dict(), default_flow_style=False, sort_keys=False))
                print("=" * 80)

        if args.json:
            print(json.dumps(output, indent=2))

        return 0

    except FileNotFoundError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Error: {e}", file=sys.stderr)
        return 1

    except ValueError as e:
        if args.json:
            print(json.dumps({"error": str(e)}))
        else:
            print(f"✗ Validation error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(_cli_main())
