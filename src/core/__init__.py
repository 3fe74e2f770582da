"""
Core library: Reusable, infrastructure-agnostic components.

Shared by the kit telemetry processing core and its tooling.

Modules:
    resilience  - Retry with exponential backoff and per-call timeouts
    logging     - Structured JSON logging with partition/device context
    errors      - Error classification and exception hierarchy
    utils       - JSON serialization and worker identifiers

Design Principles:
    - No dependencies on a specific stream, queue or store backend
    - All modules are independently testable
    - Async-first where applicable
"""

from .types import ErrorCategory

__version__ = "0.1.0"

__all__ = [
    "ErrorCategory",
]
