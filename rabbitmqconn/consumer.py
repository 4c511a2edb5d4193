import json
import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pika.exceptions import AMQPError

from rabbitmqconn.exceptions import SubscribeError

POLL_INTERVAL = 1.0


@dataclass
class Delivery:
    """Inbound message handed to a DeliveryHandler"""

    body: bytes
    properties: Any = None
    method: Any = None

    def json(self):
        return json.loads(self.body)

    @property
    def exchange(self):
        return getattr(self.method, "exchange", "")

    @property
    def routing_key(self):
        return getattr(self.method, "routing_key", "")

    @property
    def delivery_tag(self):
        return getattr(self.method, "delivery_tag", None)

    @property
    def content_type(self):
        return getattr(self.properties, "content_type", None)


class DeliveryHandler(ABC):
    @abstractmethod
    def handle(self, delivery: Delivery) -> None:
        pass


class FunctionHandler(DeliveryHandler):
    def __init__(self, callback: Callable[[Delivery], None]):
        self.callback = callback

    def handle(self, delivery: Delivery) -> None:
        self.callback(delivery)


class LoggingHandler(DeliveryHandler):
    """Default handler: logs every delivery and drops it"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def handle(self, delivery: Delivery) -> None:
        self.logger.info(
            "action: message_received | result: success | exchange: %s | body_length: %s | body_start: %s",
            delivery.exchange,
            len(delivery.body),
            delivery.body[:100],
        )


def as_handler(callback) -> DeliveryHandler:
    if callback is None:
        return LoggingHandler()
    if isinstance(callback, DeliveryHandler):
        return callback
    if callable(callback):
        return FunctionHandler(callback)
    raise TypeError(f"Callback must be callable or a DeliveryHandler, got {type(callback).__name__}")


class CancellationToken:
    """Stops a subscription from another thread"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self):
        return self._event.is_set()

    def wait(self, timeout=None):
        return self._event.wait(timeout)


class DeliveryStream:
    """
    Auto-acknowledged deliveries of one queue.

    open() registers the consumer on the calling thread; afterwards the stream
    must only be drained from a single thread (the ConsumerLoop).
    """

    def __init__(self, connection, channel, queue_name):
        self.connection = connection
        self.channel = channel
        self.queue_name = queue_name
        self.consumer_tag = None
        self.closed = False
        self._pending = deque()
        self.logger = logging.getLogger(__name__)

    def open(self):
        try:
            self.channel.add_on_cancel_callback(self._on_cancel)
            self.consumer_tag = self.channel.basic_consume(
                queue=self.queue_name,
                on_message_callback=self._on_message,
                auto_ack=True,
                exclusive=False,
            )
        except AMQPError as e:
            self.logger.error(
                f"action: start_consuming | result: fail | queue: {self.queue_name} | error: {e}"
            )
            raise SubscribeError(f"Failed to consume from queue {self.queue_name}: {e}") from e
        self.logger.info(
            f"action: start_consuming | result: in_progress | queue: {self.queue_name} | consumer_tag: {self.consumer_tag}"
        )
        return self

    def _on_message(self, _channel, method, properties, body):
        self._pending.append(Delivery(body=body, properties=properties, method=method))

    def _on_cancel(self, frame):
        # Cancel callbacks are per channel: ignore cancels aimed at other consumers
        if getattr(frame.method, "consumer_tag", None) != self.consumer_tag:
            return
        self.logger.warning(
            f"action: consumer_cancelled | result: success | queue: {self.queue_name} | msg: cancelled by broker"
        )
        self.closed = True

    def next(self, timeout=POLL_INTERVAL) -> Optional[Delivery]:
        """Next delivery in receipt order, or None if nothing arrived within timeout"""
        if not self._pending and not self.closed:
            try:
                self.connection.process_data_events(time_limit=timeout)
            except AMQPError as e:
                self.logger.warning(
                    f"action: consume | result: fail | queue: {self.queue_name} | error: {e!r}"
                )
                self.closed = True
            if self.channel.is_closed:
                self.closed = True
        if self._pending:
            return self._pending.popleft()
        return None

    def close(self):
        """Cancel the broker-side consumer if the channel is still usable"""
        if self.closed or self.consumer_tag is None:
            self.closed = True
            return
        self.closed = True
        if self.channel.is_closed:
            return
        try:
            self.channel.basic_cancel(self.consumer_tag)
            self.logger.info(
                f"action: stop_consuming | result: success | queue: {self.queue_name}"
            )
        except AMQPError as e:
            self.logger.warning(
                f"action: stop_consuming | result: fail | queue: {self.queue_name} | error: {e}"
            )


class ConsumerLoop(threading.Thread):
    """
    Drains a DeliveryStream and dispatches each delivery to the handler, one
    at a time and in receipt order, until the token is cancelled or the
    stream closes. A handler exception stops the loop and is kept in error.
    """

    def __init__(self, stream, handler=None, token=None, poll_interval=POLL_INTERVAL):
        super().__init__(name=f"RabbitMq-Consumer-{stream.queue_name}", daemon=True)
        self.stream = stream
        self.handler = as_handler(handler)
        self.token = token or CancellationToken()
        self.poll_interval = poll_interval
        self.finished = threading.Event()
        self.error = None
        self.logger = logging.getLogger(__name__)

    def run(self):
        self.logger.info(
            f"action: consumer_loop_start | result: success | queue: {self.stream.queue_name}"
        )
        try:
            while not self.token.cancelled:
                delivery = self.stream.next(self.poll_interval)
                if delivery is None:
                    if self.stream.closed:
                        break
                    continue
                self.handler.handle(delivery)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self.error = e
            self.logger.error(
                f"action: message_callback | result: fail | queue: {self.stream.queue_name} | error: {e!r}"
            )
        finally:
            self.stream.close()
            self.finished.set()
            self.logger.info(
                f"action: consumer_loop_stop | result: success | queue: {self.stream.queue_name}"
            )

    def wait(self):
        """Block until the loop exits, then re-raise a handler error if there was one"""
        try:
            self.finished.wait()
        except KeyboardInterrupt:
            self.logger.info("action: consume | result: interrupted")
            self.token.cancel()
            self.finished.wait()
        self.join()
        if self.error is not None:
            raise self.error
