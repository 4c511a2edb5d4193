"""
Process-wide RabbitMQ messaging.

This package wraps a single shared pika connection per process:
- new_client / ConnectionManager: acquire (once) and close the shared handle
- RabbitMqCoreService: declare/remove exchanges, declare queues, bind them
- RabbitMqService: topics (durable fanout exchanges), JSON publish, blocking subscribe

Usage:
    client, result = new_client(config)
    if not result.connected:
        raise result.error

    service = RabbitMqService(client)
    service.publish("orders", {"id": 1})

    # In a dedicated consumer thread/process (blocks until token.cancel()):
    service.subscribe("orders", "orders_queue", callback, token)
"""

from .common.config import (
    ExchangeConfig,
    MessageConfig,
    QueueConfig,
    RabbitMqConfig,
    initialize_config,
)
from .connection import (
    ConnectionManager,
    ConnectionResult,
    RabbitMq,
    close_client,
    new_client,
)
from .consumer import (
    CancellationToken,
    ConsumerLoop,
    Delivery,
    DeliveryHandler,
    DeliveryStream,
    LoggingHandler,
)
from .exceptions import (
    MessageUnavailableError,
    PublishError,
    RabbitMqConnectionError,
    RabbitMqError,
    SubscribeError,
    TopologyError,
)
from .messaging import RabbitMqService
from .topology import QueueInfo, RabbitMqCoreService

__all__ = [
    "ExchangeConfig",
    "MessageConfig",
    "QueueConfig",
    "RabbitMqConfig",
    "initialize_config",
    "ConnectionManager",
    "ConnectionResult",
    "RabbitMq",
    "close_client",
    "new_client",
    "CancellationToken",
    "ConsumerLoop",
    "Delivery",
    "DeliveryHandler",
    "DeliveryStream",
    "LoggingHandler",
    "MessageUnavailableError",
    "PublishError",
    "RabbitMqConnectionError",
    "RabbitMqError",
    "SubscribeError",
    "TopologyError",
    "RabbitMqService",
    "QueueInfo",
    "RabbitMqCoreService",
]
