import logging

import pika
from pika.exceptions import AMQPError

from rabbitmqconn.common.config import validate_exchange_config, validate_queue_config
from rabbitmqconn.common.utils import JSON_CONTENT_TYPE, to_json
from rabbitmqconn.consumer import ConsumerLoop, DeliveryStream
from rabbitmqconn.exceptions import (
    MessageUnavailableError,
    PublishError,
    SubscribeError,
    TopologyError,
)
from rabbitmqconn.topology import ROUTING_KEY, RabbitMqCoreService

TOPIC_EXCHANGE_KIND = "fanout"


class RabbitMqService:
    """
    Topic-style messaging on top of the shared connection.

    A topic is a durable fanout exchange. publish() serializes the payload to
    JSON; subscribe() binds a durable queue to the topic and blocks the calling
    thread while a ConsumerLoop dispatches deliveries to the callback.

    The channel is shared: callers serialize publish/declare calls, and only
    one subscription may consume on a handle at a time.
    """

    def __init__(self, client):
        self.client = client
        self.core = RabbitMqCoreService(client)
        self.logger = logging.getLogger(__name__)

    def create_topic(self, topic):
        self.core.declare_exchange_with(topic, TOPIC_EXCHANGE_KIND, True)

    def remove_topic(self, topic):
        self.core.remove_exchange(topic)

    def publish(self, topic, message):
        self.produce_with(topic, TOPIC_EXCHANGE_KIND, True, message)

    def subscribe(self, topic, queue_name, callback=None, token=None):
        self.consume_with(queue_name, topic, TOPIC_EXCHANGE_KIND, True, callback, token)

    def produce_conf(self, message):
        """Publish to the configured exchange, failing fast if the message feature is off"""
        message_config = self.core.message_config
        if not message_config.enabled:
            raise MessageUnavailableError("produce_conf")
        exchange = validate_exchange_config(message_config.exchange)
        self.produce_with(exchange.name, exchange.kind, exchange.durable, message)

    def produce_with(self, exchange_name, exchange_type, durable, message):
        try:
            body = to_json(message)
        except (TypeError, ValueError) as e:
            self.logger.error(
                f"action: publish | result: fail | exchange: {exchange_name} | error: {e}"
            )
            raise PublishError(f"Failed to serialize message for {exchange_name}: {e}") from e

        try:
            self.core.declare_exchange_with(exchange_name, exchange_type, durable)
        except TopologyError as e:
            raise PublishError(str(e)) from e

        if self.client.debug_mode:
            self.logger.info(
                f"action: publish | result: in_progress | exchange: {exchange_name} | outgoing_data: {body}"
            )
        else:
            self.logger.info(f"action: publish | result: in_progress | exchange: {exchange_name}")

        channel = self.client.channel
        try:
            channel.basic_publish(
                exchange=exchange_name,
                routing_key=ROUTING_KEY,
                body=body.encode("utf-8"),
                properties=pika.BasicProperties(content_type=JSON_CONTENT_TYPE),
                mandatory=False,
            )
        except AMQPError as e:
            self.logger.error(
                f"action: publish | result: fail | exchange: {exchange_name} | error: {e}"
            )
            raise PublishError(f"Failed to publish message to exchange {exchange_name}: {e}") from e
        self.logger.debug(f"action: publish | result: success | exchange: {exchange_name}")

    def consume_conf(self, callback=None, token=None):
        """Subscribe using the configured exchange and queue, failing fast if the message feature is off"""
        message_config = self.core.message_config
        if not message_config.enabled:
            raise MessageUnavailableError("consume_conf")
        exchange = validate_exchange_config(message_config.exchange)
        queue = validate_queue_config(message_config.queue)
        self.consume_with(
            queue.name, exchange.name, exchange.kind, exchange.durable, callback, token
        )

    def consume_with(self, queue_name, exchange_name, exchange_type, durable, callback=None, token=None):
        """
        Declare, bind and consume, then block until the subscription ends.

        It ends when token is cancelled or the broker closes the stream; a
        callback exception ends it too and is re-raised here.
        """
        loop = self.start_consumer(
            queue_name, exchange_name, exchange_type, durable, callback, token
        )
        self.logger.info(
            f"action: consume | result: in_progress | msg: consumer is waiting for messages | exchange: {exchange_name}"
        )
        loop.wait()

    def start_consumer(self, queue_name, exchange_name, exchange_type, durable, callback=None, token=None):
        """Set up the subscription and start its ConsumerLoop without blocking"""
        kind = getattr(exchange_type, "value", exchange_type)
        if kind != TOPIC_EXCHANGE_KIND:
            self.logger.warning(
                f"action: consume | result: in_progress | exchange: {exchange_name} | "
                f"msg: queues are bound with an empty routing key, {kind} exchanges may not route to them"
            )
        try:
            self.core.declare_exchange_with(exchange_name, exchange_type, durable)
            queue = self.core.declare_queue_with(queue_name, durable)
            self.core.bind_queue_exchange_with(queue.name, exchange_name)
        except TopologyError as e:
            raise SubscribeError(str(e)) from e

        stream = DeliveryStream(self.client.connection, self.client.channel, queue.name).open()
        loop = ConsumerLoop(stream, callback, token)
        loop.start()
        return loop
