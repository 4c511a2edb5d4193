import logging
from dataclasses import dataclass

from pika.exceptions import AMQPError

from rabbitmqconn.common.config import (
    EXCHANGE_KINDS,
    ExchangeConfig,
    QueueConfig,
    validate_exchange_config,
    validate_queue_config,
)
from rabbitmqconn.exceptions import RabbitMqConnectionError, TopologyError

# Bindings always use the empty routing key: every bound queue gets every
# message, which is only meaningful for fanout exchanges.
ROUTING_KEY = ""


@dataclass
class QueueInfo:
    """Queue descriptor returned by the broker on declaration"""

    name: str
    message_count: int = 0
    consumer_count: int = 0


class RabbitMqCoreService:
    """
    Declares, removes and binds exchanges and queues on the shared channel.

    Every operation is safe to re-invoke: the broker treats a repeated
    declaration with identical arguments as a no-op.
    """

    def __init__(self, client):
        self.client = client
        self.logger = logging.getLogger(__name__)

    @property
    def message_config(self):
        if self.client.config is None:
            raise RabbitMqConnectionError("broker unavailable")
        return self.client.config.message

    def remove_exchange(self, exchange_name):
        """Delete an exchange whether or not it is still in use"""
        channel = self.client.channel
        try:
            channel.exchange_delete(exchange=exchange_name, if_unused=False)
        except AMQPError as e:
            self.logger.error(
                f"action: remove_exchange | result: fail | exchange: {exchange_name} | error: {e}"
            )
            raise TopologyError(
                f"Failed to remove exchange {exchange_name}: {e}"
            ) from e
        self.logger.info(
            f"action: remove_exchange | result: success | exchange: {exchange_name}"
        )

    def declare_exchange_conf(self):
        exchange = validate_exchange_config(self.message_config.exchange)
        self.declare_exchange_with(exchange.name, exchange.kind, exchange.durable)

    def declare_exchange_with(self, exchange_name, exchange_type, durable):
        # Accept pika.exchange_type.ExchangeType members as well as plain strings
        kind = getattr(exchange_type, "value", exchange_type) or ""
        exchange = ExchangeConfig(name=exchange_name, kind=kind, durable=durable)
        if exchange.kind not in EXCHANGE_KINDS and not exchange.kind.startswith("x-"):
            # An unknown type makes the broker close the whole connection
            raise TopologyError(
                f"Invalid exchange type '{exchange.kind}' for exchange {exchange.name}"
            )

        channel = self.client.channel
        try:
            channel.exchange_declare(
                exchange=exchange.name,
                exchange_type=exchange.kind,
                durable=exchange.durable,
                auto_delete=False,
                internal=False,
                arguments=None,
            )
        except AMQPError as e:
            self.logger.error(
                f"action: declare_exchange | result: fail | exchange: {exchange.name} | "
                f"kind: {exchange.kind} | error: {e}"
            )
            raise TopologyError(
                f"Failed to declare exchange {exchange.name}: {e}"
            ) from e
        self.logger.info(
            f"action: declare_exchange | result: success | exchange: {exchange.name} | kind: {exchange.kind}"
        )

    def declare_queue_conf(self):
        queue = validate_queue_config(self.message_config.queue)
        return self.declare_queue_with(queue.name, queue.durable)

    def declare_queue_with(self, queue_name, durable):
        """Declare a queue; an empty name lets the broker generate one"""
        queue = QueueConfig(name=queue_name, durable=durable)
        channel = self.client.channel
        try:
            frame = channel.queue_declare(
                queue=queue.name,
                durable=queue.durable,
                exclusive=False,
                auto_delete=False,
                arguments=None,
            )
        except AMQPError as e:
            self.logger.error(
                f"action: declare_queue | result: fail | queue: {queue.name} | error: {e}"
            )
            raise TopologyError(f"Failed to declare queue {queue.name}: {e}") from e

        info = QueueInfo(
            name=frame.method.queue,
            message_count=frame.method.message_count,
            consumer_count=frame.method.consumer_count,
        )
        self.logger.info(
            "action: declare_queue | result: success | queue: %s | messages: %s | consumers: %s",
            info.name,
            info.message_count,
            info.consumer_count,
        )
        return info

    def bind_queue_exchange_conf(self):
        exchange = validate_exchange_config(self.message_config.exchange)
        queue = validate_queue_config(self.message_config.queue)
        self.bind_queue_exchange_with(queue.name, exchange.name)

    def bind_queue_exchange_with(self, queue_name, exchange_name):
        channel = self.client.channel
        try:
            channel.queue_bind(
                queue=queue_name,
                exchange=exchange_name,
                routing_key=ROUTING_KEY,
                arguments=None,
            )
        except AMQPError as e:
            self.logger.error(
                f"action: bind_queue | result: fail | "
                f"queue: {queue_name} | exchange: {exchange_name} | error: {e}"
            )
            raise TopologyError(
                f"Failed to bind queue {queue_name} to exchange {exchange_name}: {e}"
            ) from e
        self.logger.info(
            f"action: bind_queue | result: success | queue: {queue_name} | exchange: {exchange_name}"
        )
