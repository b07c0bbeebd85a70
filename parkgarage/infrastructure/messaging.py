# File: parkgarage/infrastructure/messaging.py
"""
Messaging Infrastructure for the Parking Garage

Outbound, event-driven notification of what happened in the garage:
1. Event Bus - in-process publish/subscribe for domain events
2. Message Queues - hand-off to external brokers (Redis Pub/Sub, RabbitMQ)
   plus an in-memory queue for tests and local runs
3. Message Bus - routes each domain event to the event bus and, through an
   outbox drained by a background worker, to the broker with retries and
   exponential backoff

Publication never fails or stalls a garage workflow: broker errors are
logged and the message is dropped after the last retry. Broker clients use
short socket timeouts so a dead broker cannot hang the worker.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4
import json
import logging
import threading
import time

import redis
import pika

from ..domain.models import DomainEvent


BROKER_TIMEOUT = 2.0  # seconds


# ============================================================================
# MESSAGE TYPES AND ENUMS
# ============================================================================

class EventType(str, Enum):
    """Garage event types"""
    SPOTS_ADDED = "spots_added"
    TARIFF_CHANGED = "tariff_changed"
    VEHICLE_ENTERED = "vehicle_entered"
    VEHICLE_EXITED = "vehicle_exited"
    PAYMENT_RECORDED = "payment_recorded"


# ============================================================================
# MESSAGE CLASSES
# ============================================================================

@dataclass
class EventMessage:
    """Wire representation of a domain event"""
    event_type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    message_id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=datetime.now)
    source: str = "parkgarage"

    @classmethod
    def from_domain_event(cls, event: DomainEvent, source: str = "parkgarage") -> 'EventMessage':
        return cls(
            event_type=EventType(event.event_type),
            data=event.payload(),
            message_id=UUID(event.event_id),
            timestamp=event.timestamp,
            source=source
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['event_type'] = self.event_type.value
        data['message_id'] = str(self.message_id)
        data['timestamp'] = self.timestamp.isoformat()
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventMessage':
        return cls(
            event_type=EventType(data['event_type']),
            data=data.get('data', {}),
            message_id=UUID(data['message_id']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            source=data.get('source', "parkgarage")
        )

    @classmethod
    def from_json(cls, json_str: str) -> 'EventMessage':
        return cls.from_dict(json.loads(json_str))


# ============================================================================
# EVENT HANDLERS
# ============================================================================

class EventHandler(ABC):
    """Abstract base class for event handlers"""

    @abstractmethod
    def handle(self, message: EventMessage) -> None:
        pass

    def can_handle(self, message: EventMessage) -> bool:
        return True


class AuditLogEventHandler(EventHandler):
    """Writes every garage event to the audit logger"""

    def __init__(self, logger_name: str = "parkgarage.audit"):
        self._logger = logging.getLogger(logger_name)

    def handle(self, message: EventMessage) -> None:
        self._logger.info(f"{message.event_type.value}: {json.dumps(message.data, default=str, sort_keys=True)}")


# ============================================================================
# EVENT BUS (In-memory)
# ============================================================================

class EventBus:
    """
    In-memory event bus for intra-process event publishing

    A failing handler is logged and does not stop the other handlers.
    """

    def __init__(self):
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
            self._logger.debug(f"Subscribed {handler.__class__.__name__} to {event_type.value}")

    def subscribe_all(self, handler: EventHandler) -> None:
        for event_type in EventType:
            self.subscribe(event_type, handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._subscribers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            self._logger.debug(f"Unsubscribed {handler.__class__.__name__} from {event_type.value}")

    def publish(self, message: EventMessage) -> None:
        self._logger.debug(f"Publishing event: {message.event_type.value} (ID: {message.message_id})")

        for handler in list(self._subscribers.get(message.event_type, [])):
            if not handler.can_handle(message):
                continue
            try:
                handler.handle(message)
            except Exception as e:
                self._logger.error(
                    f"Error handling event {message.event_type.value} with {handler.__class__.__name__}: {e}"
                )

    def clear_subscribers(self) -> None:
        self._subscribers.clear()


# ============================================================================
# MESSAGE QUEUE ABSTRACTIONS
# ============================================================================

class MessageQueue(ABC):
    """Abstract base class for outbound message queues"""

    @abstractmethod
    def publish(self, topic: str, message: EventMessage) -> bool:
        """
        Publish a message to a topic
        Returns: True if the broker accepted it
        Raises: broker specific errors on connection failure
        """

    def close(self) -> None:
        pass


class RedisMessageQueue(MessageQueue):
    """Redis Pub/Sub publisher, one channel per topic"""

    def __init__(self, redis_url: str = "redis://localhost:6379", **kwargs):
        self.redis_url = redis_url
        self._logger = logging.getLogger(self.__class__.__name__)
        kwargs.setdefault("socket_connect_timeout", BROKER_TIMEOUT)
        kwargs.setdefault("socket_timeout", BROKER_TIMEOUT)
        self.redis_client = redis.Redis.from_url(redis_url, **kwargs)

    def publish(self, topic: str, message: EventMessage) -> bool:
        receivers = self.redis_client.publish(topic, message.to_json())
        self._logger.debug(f"Published {message.message_id} to {topic} ({receivers} receiver(s))")
        return True

    def close(self) -> None:
        self.redis_client.close()
        self._logger.info("Redis message queue closed")


class RabbitMQMessageQueue(MessageQueue):
    """RabbitMQ publisher using a durable topic exchange per topic"""

    def __init__(self, amqp_url: str = "amqp://localhost:5672", timeout: float = BROKER_TIMEOUT):
        self.amqp_url = amqp_url
        self._logger = logging.getLogger(self.__class__.__name__)
        self.connection_params = pika.URLParameters(amqp_url)
        self.connection_params.socket_timeout = timeout
        self.connection_params.blocked_connection_timeout = timeout
        self._connection: Optional[pika.BlockingConnection] = None
        self._channel = None
        self._declared: set = set()

    def _ensure_connection(self) -> None:
        if not self._connection or self._connection.is_closed:
            self._connection = pika.BlockingConnection(self.connection_params)
            self._channel = self._connection.channel()
            self._declared.clear()
            self._logger.debug("RabbitMQ connection established")

    def publish(self, topic: str, message: EventMessage) -> bool:
        self._ensure_connection()

        if topic not in self._declared:
            self._channel.exchange_declare(exchange=topic, exchange_type='topic', durable=True)
            self._declared.add(topic)

        self._channel.basic_publish(
            exchange=topic,
            routing_key=message.event_type.value,
            body=message.to_json().encode('utf-8'),
            properties=pika.BasicProperties(
                delivery_mode=2,  # persistent
                content_type='application/json',
                message_id=str(message.message_id),
                timestamp=int(message.timestamp.timestamp())
            )
        )
        self._logger.debug(f"Published {message.message_id} to exchange {topic}")
        return True

    def close(self) -> None:
        if self._connection and not self._connection.is_closed:
            self._connection.close()
        self._logger.info("RabbitMQ message queue closed")


class InMemoryMessageQueue(MessageQueue):
    """In-memory message queue for tests and local runs"""

    def __init__(self):
        self._messages: Dict[str, List[EventMessage]] = {}
        self._callbacks: Dict[str, List[Callable[[EventMessage], None]]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def publish(self, topic: str, message: EventMessage) -> bool:
        self._messages.setdefault(topic, []).append(message)
        for callback in self._callbacks.get(topic, []):
            try:
                callback(message)
            except Exception as e:
                self._logger.error(f"Error in callback for topic {topic}: {e}")
        return True

    def subscribe(self, topic: str, callback: Callable[[EventMessage], None]) -> None:
        self._callbacks.setdefault(topic, []).append(callback)

    def get_messages(self, topic: str) -> List[EventMessage]:
        return list(self._messages.get(topic, []))


# ============================================================================
# MESSAGE BUS
# ============================================================================

class MessageBus:
    """
    Routes domain events to the in-process event bus and the broker

    Event bus handlers run on the caller's thread. Broker publication goes
    through an outbox drained by one worker thread owned by the bus, so a
    slow or unreachable broker never holds up a garage workflow. Messages
    leave the outbox in publication order. Each is retried max_retries
    times with exponential backoff starting at retry_delay seconds.
    """

    def __init__(
        self,
        event_bus: Optional[EventBus] = None,
        message_queue: Optional[MessageQueue] = None,
        topic: str = "parkgarage.events",
        max_retries: int = 3,
        retry_delay: float = 0.5,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.event_bus = event_bus or EventBus()
        self.message_queue = message_queue
        self.topic = topic
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep
        self._logger = logging.getLogger(self.__class__.__name__)
        self.failed_messages: List[EventMessage] = []

        # Outbox for broker delivery; the head stays queued while in flight
        self._outbox: List[EventMessage] = []
        self._outbox_lock = threading.Condition()
        self._worker: Optional[threading.Thread] = None
        self._closed = False

    def publish_events(self, events: List[DomainEvent]) -> None:
        for event in events:
            self.publish_event(event)

    def publish_event(self, event: DomainEvent) -> None:
        message = EventMessage.from_domain_event(event)
        self._logger.info(f"Publishing event {message.event_type.value} (ID: {message.message_id})")

        self.event_bus.publish(message)

        if self.message_queue is not None:
            self._add_to_outbox(message)

    def _add_to_outbox(self, message: EventMessage) -> None:
        with self._outbox_lock:
            if self._closed:
                self._logger.error(f"Message bus closed, dropping message {message.message_id}")
                self.failed_messages.append(message)
                return

            self._outbox.append(message)
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._process_outbox, name="parkgarage-outbox", daemon=True
                )
                self._worker.start()
            self._outbox_lock.notify_all()

    def _process_outbox(self) -> None:
        while True:
            with self._outbox_lock:
                while not self._outbox and not self._closed:
                    self._outbox_lock.wait()
                if not self._outbox:
                    return
                message = self._outbox[0]

            success = self._publish_with_retry(message)

            with self._outbox_lock:
                self._outbox.pop(0)
                if not success:
                    self._logger.error(
                        f"Failed to publish message {message.message_id} after {self.max_retries} attempts"
                    )
                    self.failed_messages.append(message)
                self._outbox_lock.notify_all()

    def _publish_with_retry(self, message: EventMessage) -> bool:
        for attempt in range(self.max_retries):
            try:
                if self.message_queue.publish(self.topic, message):
                    return True
            except Exception as e:
                self._logger.warning(f"Attempt {attempt + 1} failed for message {message.message_id}: {e}")
            if attempt < self.max_retries - 1:
                self._sleep(self.retry_delay * (2 ** attempt))
        return False

    def pending_count(self) -> int:
        with self._outbox_lock:
            return len(self._outbox)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until every queued message was delivered or given up on
        Returns: False if the timeout expired first
        """
        with self._outbox_lock:
            return self._outbox_lock.wait_for(lambda: not self._outbox, timeout)

    def close(self, timeout: Optional[float] = 10.0) -> None:
        """Drain the outbox, stop the worker and close the broker connection"""
        with self._outbox_lock:
            self._closed = True
            self._outbox_lock.notify_all()
            worker = self._worker

        if worker is not None:
            worker.join(timeout)
            if worker.is_alive():
                self._logger.warning(
                    f"Outbox worker still busy after {timeout}s, {self.pending_count()} message(s) undelivered"
                )

        if self.message_queue is not None:
            self.message_queue.close()
        self._logger.info("Message bus closed")


class MessageBrokerFactory:
    """Factory for creating message buses by broker name"""

    @staticmethod
    def create_message_queue(broker_type: str, url: Optional[str] = None) -> Optional[MessageQueue]:
        if broker_type == "none":
            return None
        if broker_type == "memory":
            return InMemoryMessageQueue()
        if broker_type == "redis":
            return RedisMessageQueue(url or "redis://localhost:6379")
        if broker_type == "rabbitmq":
            return RabbitMQMessageQueue(url or "amqp://localhost:5672")
        raise ValueError(f"Unknown broker type: {broker_type}")

    @staticmethod
    def create_message_bus(
        broker_type: str = "memory",
        url: Optional[str] = None,
        topic: str = "parkgarage.events",
        audit: bool = True
    ) -> MessageBus:
        event_bus = EventBus()
        if audit:
            event_bus.subscribe_all(AuditLogEventHandler())
        return MessageBus(
            event_bus=event_bus,
            message_queue=MessageBrokerFactory.create_message_queue(broker_type, url),
            topic=topic
        )
