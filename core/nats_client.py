"""
NATS JetStream Client for Python Microservices
Provides event-driven communication between services

Thin wrapper around nats-py: connects, lazily ensures a stream per subject
prefix and publishes JSON-encoded Event envelopes.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

import nats
from nats.errors import Error as NATSError
from nats.js.errors import Error as JetStreamError

if TYPE_CHECKING:
    from core.config_manager import ConfigManager


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return float(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types published on the bus"""

    # Withdrawal Events
    WITHDRAWAL_INITIATED = "withdrawal.initiated"
    WITHDRAWAL_TOKEN_ISSUED = "withdrawal.token.issued"
    WITHDRAWAL_TOKEN_REDEEMED = "withdrawal.token.redeemed"
    WITHDRAWAL_TOKEN_CANCELLED = "withdrawal.token.cancelled"
    WITHDRAWAL_TOKEN_EXPIRED = "withdrawal.token.expired"


class ServiceSource(Enum):
    """Service sources"""

    WITHDRAWAL_SERVICE = "withdrawal_service"
    ACCOUNT_SERVICE = "account_service"
    NOTIFICATION_SERVICE = "notification_service"
    SUBSCRIPTION_SERVICE = "subscription_service"


class Event:
    """Event model"""

    def __init__(
        self,
        event_type: EventType,
        source: ServiceSource,
        data: Dict[str, Any],
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ):
        self.id = str(uuid.uuid4())
        self.type = event_type.value
        self.source = source.value
        self.data = data
        self.subject = subject
        self.timestamp = datetime.now(timezone.utc).isoformat()
        self.metadata = metadata or {}
        self.version = "1.0.0"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "timestamp": self.timestamp,
            "data": self.data,
            "metadata": self.metadata,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        event = cls.__new__(cls)
        event.id = data.get("id")
        event.type = data.get("type")
        event.source = data.get("source")
        event.subject = data.get("subject")
        event.timestamp = data.get("timestamp")
        event.data = data.get("data", {})
        event.metadata = data.get("metadata", {})
        event.version = data.get("version", "1.0.0")
        return event


class NATSEventBus:
    """NATS JetStream event bus (publish side)"""

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name

        # Priority: environment variables → default fallback
        if config is None:
            config = ConfigManager(service_name)

        self.servers = config.get("NATS_URL") or config.infra.nats_server

        self._nc = None
        self._js = None
        self._streams: set = set()

        logger.info(f"NATS EventBus initialized: {self.servers}")

    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(self.servers, name=self.service_name)
            self._js = self._nc.jetstream()
            logger.info(f"Connected to NATS as {self.service_name}")
        except (NATSError, OSError) as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def _ensure_stream(self, event_type: str) -> str:
        prefix = event_type.split('.')[0]
        stream_name = f"{prefix}-stream"
        if stream_name not in self._streams:
            try:
                await self._js.add_stream(name=stream_name, subjects=[f"{prefix}.>"])
            except JetStreamError as e:
                # Stream may already exist with a compatible config
                logger.debug(f"Stream creation note: {e}")
            self._streams.add(stream_name)
        return stream_name

    async def publish_event(self, event: Event) -> bool:
        """
        Publish an event to NATS JetStream.

        The event type is used as subject (e.g. "withdrawal.token.redeemed");
        the stream is derived from its first segment.
        """
        if not self.is_connected:
            logger.error("Not connected to NATS")
            return False

        try:
            stream_name = await self._ensure_stream(event.type)
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            ack = await self._js.publish(event.type, data, stream=stream_name)
            logger.info(f"Published event {event.type} [{event.id}] to stream {stream_name}, seq={ack.seq}")
            return True
        except (NATSError, JetStreamError) as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    async def close(self):
        """Drain and close NATS connection"""
        if self._nc is not None:
            await self._nc.drain()
            self._nc = None
            self._js = None
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._nc is not None and self._nc.is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional["ConfigManager"] = None,
) -> NATSEventBus:
    """
    Get or create event bus instance.

    Args:
        service_name: Name of the service using the event bus
        config: Optional ConfigManager instance for service discovery

    Returns:
        NATSEventBus instance
    """
    global _event_bus

    if _event_bus is None:
        bus = NATSEventBus(service_name=service_name, config=config)
        await bus.connect()
        _event_bus = bus

    return _event_bus
