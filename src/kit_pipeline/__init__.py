"""
Kit telemetry processing core.

Wearable/mobile kits emit sensor events into a partitioned stream. Each
stream partition is processed by its own worker, strictly in order:

    PartitionReader → Classifier → Deduplicator
        → EventStoreWriter (always) → AlertRouter (critical only)
        → CheckpointManager

Subpackages:
    common       - Shared types, metrics, telemetry sink, health server, signals
    schemas      - Pydantic payload, alert and stored-record schemas
    sources      - Stream sources (in-memory, Event Hub, Kafka)
    checkpoints  - Durable partition checkpoints (memory, JSON file, blob)
    alerts       - Alert channels (in-memory, Event Hub, Kafka)
    stores       - Document stores keyed by device (memory, JSON file, blob)
    idempotency  - Optional dedup store shared across processes
    processing   - Pipeline stages, partition worker and supervisor

Dependencies:
    - core.*: Errors, retry, structured logging
    - config.*: YAML configuration
    - azure-eventhub / aiokafka / azure-storage-blob: transports
    - pydantic: Schema validation
    - prometheus-client / aiohttp: Observability
"""

__version__ = "0.1.0"
