"""Tests for the alert channel backends and factory."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config.config import AlertSettings
from conftest import EVENT_TIME
from core.errors.exceptions import PermanentError, ThrottlingError, TransientIOError
from kit_pipeline.alerts import AlertChannelProtocol, MemoryAlertChannel, create_alert_channel
from kit_pipeline.alerts.base import alert_headers
from kit_pipeline.common.connections import KafkaConnection
from kit_pipeline.schemas.records import AlertMessage

CONN_STR = "Endpoint=sb://ns.servicebus.windows.net/;SharedAccessKeyName=k;SharedAccessKey=secret"


def _message(device_id="kit-1", event_id="e1"):
    return AlertMessage(device_id=device_id, event_id=event_id, timestamp=EVENT_TIME, reason="sos_pressed")


class KafkaConnectionError(Exception):
    pass


class ServerBusyError(Exception):
    pass


class EventDataSendError(Exception):
    pass


class TestAlertHeaders:
    def test_dedupe_identity(self):
        assert alert_headers(_message()) == {"device_id": "kit-1", "event_id": "e1"}


class TestMemoryAlertChannel:
    async def test_collects_messages(self):
        channel = MemoryAlertChannel()
        await channel.send(_message())
        await channel.send(_message(event_id="e2"))
        assert [m.event_id for m in channel.delivered] == ["e1", "e2"]
        assert channel.for_event("kit-1", "e2") == [_message(event_id="e2")]

    async def test_injected_failures_count_attempts(self):
        channel = MemoryAlertChannel()
        channel.fail_next(TransientIOError("busy"), times=2)
        for _ in range(2):
            with pytest.raises(TransientIOError):
                await channel.send(_message())
        await channel.send(_message())
        assert channel.send_attempts == 3
        assert len(channel.delivered) == 1


class TestEventHubAlertChannel:
    @pytest.fixture
    def producer(self):
        producer = MagicMock()
        batch = MagicMock()
        producer.create_batch = AsyncMock(return_value=batch)
        producer.send_batch = AsyncMock()
        producer.close = AsyncMock()
        producer.batch = batch
        return producer

    @pytest.fixture
    async def channel(self, producer):
        from kit_pipeline.alerts.eventhub import EventHubAlertChannel

        with patch("kit_pipeline.alerts.eventhub.EventHubProducerClient") as producer_cls:
            producer_cls.from_connection_string = MagicMock(return_value=producer)
            channel = EventHubAlertChannel(CONN_STR, eventhub_name="kit-alerts")
            await channel.start()
            yield channel

    def test_requires_connection_string(self):
        from kit_pipeline.alerts.eventhub import EventHubAlertChannel

        with pytest.raises(ValueError, match="alerts.connection_string"):
            EventHubAlertChannel("")

    async def test_send_before_start(self):
        from kit_pipeline.alerts.eventhub import EventHubAlertChannel

        with pytest.raises(RuntimeError):
            await EventHubAlertChannel(CONN_STR).send(_message())

    async def test_send_partitions_by_device(self, channel, producer):
        await channel.send(_message(device_id="kit-9"))

        producer.create_batch.assert_awaited_once_with(partition_key="kit-9")
        event_data = producer.batch.add.call_args.args[0]
        assert json.loads(event_data.body_as_str())["device_id"] == "kit-9"
        assert event_data.properties == {"device_id": "kit-9", "event_id": "e1"}
        producer.send_batch.assert_awaited_once_with(producer.batch)

    async def test_throttling_classified(self, channel, producer):
        producer.send_batch.side_effect = ServerBusyError("server busy")
        with pytest.raises(ThrottlingError):
            await channel.send(_message())

    async def test_permanent_send_error(self, channel, producer):
        producer.send_batch.side_effect = EventDataSendError("too large")
        with pytest.raises(PermanentError):
            await channel.send(_message())

    async def test_close(self, channel, producer):
        with patch("kit_pipeline.alerts.eventhub.asyncio.sleep", new=AsyncMock()):
            await channel.close()
        producer.close.assert_awaited_once()


class TestKafkaAlertChannel:
    @pytest.fixture
    def producer(self):
        producer = MagicMock()
        producer.start = AsyncMock()
        producer.stop = AsyncMock()
        producer.flush = AsyncMock()
        producer.send_and_wait = AsyncMock()
        return producer

    def test_validation(self):
        from kit_pipeline.alerts.kafka import KafkaAlertChannel

        with pytest.raises(ValueError):
            KafkaAlertChannel(KafkaConnection(""), "kit.alerts")
        with pytest.raises(ValueError):
            KafkaAlertChannel(KafkaConnection("localhost:9092"), "")

    async def test_send_keyed_by_device(self, producer):
        from kit_pipeline.alerts.kafka import KafkaAlertChannel

        with patch("kit_pipeline.alerts.kafka.AIOKafkaProducer", return_value=producer) as producer_cls:
            channel = KafkaAlertChannel(KafkaConnection("localhost:9092"), "kit.alerts")
            await channel.start()
            await channel.send(_message(device_id="kit-3"))
            await channel.close()

        config = producer_cls.call_args.kwargs
        assert config["acks"] == "all"
        assert config["enable_idempotence"] is True
        call = producer.send_and_wait.call_args
        assert call.args == ("kit.alerts",)
        assert call.kwargs["key"] == b"kit-3"
        assert ("event_id", b"e1") in call.kwargs["headers"]
        producer.flush.assert_awaited_once()
        producer.stop.assert_awaited_once()

    async def test_send_error_classified(self, producer):
        from kit_pipeline.alerts.kafka import KafkaAlertChannel

        producer.send_and_wait.side_effect = KafkaConnectionError("broker gone")
        with patch("kit_pipeline.alerts.kafka.AIOKafkaProducer", return_value=producer):
            channel = KafkaAlertChannel(KafkaConnection("localhost:9092"), "kit.alerts")
            await channel.start()
            with pytest.raises(TransientIOError):
                await channel.send(_message())

    async def test_start_failure_classified(self, producer):
        from kit_pipeline.alerts.kafka import KafkaAlertChannel

        producer.start.side_effect = KafkaConnectionError("no brokers")
        with patch("kit_pipeline.alerts.kafka.AIOKafkaProducer", return_value=producer):
            channel = KafkaAlertChannel(KafkaConnection("localhost:9092"), "kit.alerts")
            with pytest.raises(TransientIOError):
                await channel.start()
        assert channel._producer is None


class TestCreateAlertChannel:
    def test_memory(self):
        channel = create_alert_channel(AlertSettings(type="memory"))
        assert isinstance(channel, MemoryAlertChannel)
        assert isinstance(channel, AlertChannelProtocol)

    def test_eventhub(self):
        from kit_pipeline.alerts.eventhub import EventHubAlertChannel

        channel = create_alert_channel(
            AlertSettings(type="eventhub", connection_string=CONN_STR, eventhub_name="kit-alerts")
        )
        assert isinstance(channel, EventHubAlertChannel)

    def test_kafka(self):
        from kit_pipeline.alerts.kafka import KafkaAlertChannel

        channel = create_alert_channel(
            AlertSettings(type="kafka", bootstrap_servers="localhost:9092", topic="kit.alerts")
        )
        assert isinstance(channel, KafkaAlertChannel)
        assert channel.topic == "kit.alerts"

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown alert channel type"):
            create_alert_channel(AlertSettings(type="sms"))
