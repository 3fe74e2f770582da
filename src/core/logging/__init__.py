"""
Structured logging module.

Provides JSON logging with worker and partition context propagation.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.partition_context import (
    PartitionLogContext,
    clear_partition_context,
    get_partition_context,
    set_partition_context,
)
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.setup import (
    generate_cycle_id,
    get_log_file_path,
    get_logger,
    setup_logging,
)
from core.logging.utilities import (
    format_cycle_output,
    log_exception,
    log_startup_banner,
    log_with_context,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    "generate_cycle_id",
    "get_log_file_path",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Partition Context
    "set_partition_context",
    "get_partition_context",
    "clear_partition_context",
    "PartitionLogContext",
    # Utilities
    "log_with_context",
    "log_exception",
    "log_startup_banner",
    "format_cycle_output",
    "PeriodicStatsLogger",
]
