"""
NATS JetStream Client for Python Microservices

Event-driven communication between services on top of nats-py.
"""

import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Set, TYPE_CHECKING

import nats
from nats.errors import NoServersError
from nats.aio.client import Client as NATSClient
from nats.js import JetStreamContext
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

if TYPE_CHECKING:
    from core.config_manager import ConfigManager


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


logger = logging.getLogger(__name__)


class EventType(Enum):
    """Event types published on the bus"""

    # Shipment Events
    SHIPMENT_CREATED = "shipment.created"
    SHIPMENT_SUBMITTED = "shipment.submitted"
    SHIPMENT_SUBMISSION_CANCELED = "shipment.submission_canceled"
    SHIPMENT_ACCEPTED = "shipment.accepted"
    SHIPMENT_REJECTED = "shipment.rejected"
    SHIPMENT_DELETED = "shipment.deleted"
    SHIPMENT_TRANSFER_INCONSISTENT = "shipment.transfer_inconsistent"


class ServiceSource(Enum):
    """Service sources"""

    SHIPMENT_SERVICE = "shipment_service"


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
    """
    NATS JetStream event bus.

    One stream per subject prefix ("shipment.>" -> "shipment-stream"),
    created lazily on first publish.
    """

    def __init__(
        self,
        service_name: str,
        config: Optional["ConfigManager"] = None,
    ):
        from core.config_manager import ConfigManager

        self.service_name = service_name

        if config is None:
            config = ConfigManager(service_name)
        self.servers = config.get_infra_config().nats_servers

        self._nc: Optional[NATSClient] = None
        self._js: Optional[JetStreamContext] = None
        self._streams: Set[str] = set()
        self._is_connected = False

        logger.info(f"NATS EventBus initialized: {self.servers}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((NoServersError, OSError)),
        reraise=True,
    )
    async def connect(self):
        """Connect to NATS and open a JetStream context"""
        try:
            self._nc = await nats.connect(servers=[self.servers], name=self.service_name)
            self._js = self._nc.jetstream()
            self._is_connected = True
            logger.info(f"Connected to NATS as {self.service_name}")
        except Exception as e:
            logger.error(f"Failed to connect to NATS: {e}")
            raise

    async def publish_event(self, event: Event) -> bool:
        """Publish an event to JetStream; returns False instead of raising"""
        if not self._is_connected or not self._js:
            logger.error("Not connected to NATS")
            return False

        try:
            subject = event.type
            data = json.dumps(event.to_dict(), cls=DecimalEncoder).encode()
            stream_name = self._get_stream_name_for_event(event.type)

            if stream_name not in self._streams:
                subject_prefix = event.type.split('.')[0]
                try:
                    await self._js.add_stream(name=stream_name, subjects=[f"{subject_prefix}.>"])
                except Exception as e:
                    logger.debug(f"Stream creation note: {e}")
                self._streams.add(stream_name)

            ack = await self._js.publish(subject, data)
            logger.info(f"Published event {event.type} [{event.id}] to stream {ack.stream}, seq={ack.seq}")
            return True

        except Exception as e:
            logger.error(f"Error publishing event {event.id}: {e}")
            return False

    def _get_stream_name_for_event(self, event_type: str) -> str:
        return f"{event_type.split('.')[0]}-stream"

    async def close(self):
        """Drain and close the connection"""
        if self._nc is not None:
            try:
                await self._nc.drain()
            except Exception as e:
                logger.warning(f"Error draining NATS connection: {e}")
            self._nc = None
            self._js = None

        self._is_connected = False
        logger.info("Disconnected from NATS")

    @property
    def is_connected(self) -> bool:
        """Check if connected to NATS"""
        return self._is_connected


# Singleton instance
_event_bus: Optional[NATSEventBus] = None


async def get_event_bus(
    service_name: str,
    config: Optional["ConfigManager"] = None,
) -> NATSEventBus:
    """Get or create the connected event bus instance"""
    global _event_bus

    if _event_bus is None:
        bus = NATSEventBus(service_name=service_name, config=config)
        await bus.connect()
        _event_bus = bus

    return _event_bus
