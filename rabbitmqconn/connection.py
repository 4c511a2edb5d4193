import logging
import os
import threading
from dataclasses import dataclass
from typing import Optional

import pika
from pika.exceptions import AMQPError

from rabbitmqconn.exceptions import RabbitMqConnectionError

BROKER_UNAVAILABLE = "broker unavailable"


@dataclass
class ConnectionResult:
    """Outcome of an acquisition attempt"""

    connected: bool = False
    new_instance: bool = False
    message: str = ""
    error: Optional[Exception] = None
    pid: int = 0
    debug_mode: bool = False


class RabbitMq:
    """
    Shared connection and channel to the broker.

    An empty handle (no connection) is returned when the broker is disabled
    or unreachable; any channel access on it raises RabbitMqConnectionError.
    """

    def __init__(self, connection=None, channel=None, config=None, pid=None):
        self.connection = connection
        self._channel = channel
        self.config = config
        self.pid = pid
        self.logger = logging.getLogger(__name__)

    @property
    def debug_mode(self):
        return bool(self.config and self.config.debug_mode)

    def is_empty(self):
        return self.connection is None

    def is_connected(self):
        """Check if connection is active"""
        return self.connection is not None and not self.connection.is_closed

    @property
    def channel(self):
        """Channel for this handle, reopened if the broker closed it after a rejected operation"""
        if not self.is_connected():
            raise RabbitMqConnectionError(BROKER_UNAVAILABLE)
        if self._channel is None or self._channel.is_closed:
            try:
                self._channel = self.connection.channel()
            except AMQPError as e:
                self.logger.error(f"action: channel_open | result: fail | error: {e}")
                raise RabbitMqConnectionError(str(e)) from e
            self.logger.debug("action: channel_open | result: success")
        return self._channel

    def close(self):
        """Close channel (if still open) and then the connection"""
        if self._channel is not None and not self._channel.is_closed:
            try:
                self._channel.close()
                self.logger.debug("action: channel_close | result: success")
            except AMQPError as e:
                self.logger.warning(f"action: channel_close | result: fail | error: {e}")
        self._channel = None

        if self.connection is not None and not self.connection.is_closed:
            try:
                self.connection.close()
            except AMQPError as e:
                self.logger.error(f"action: connection_close | result: fail | error: {e}")
                raise RabbitMqConnectionError(str(e)) from e
            self.logger.debug("action: connection_close | result: success")

        self.logger.info("action: rabbitmq_close | result: success")


class ConnectionManager:
    """
    Owns the single broker connection of the process.

    acquire() hands out the same RabbitMq handle until close() is called.
    Acquisition is serialized with a lock; the handle itself is not thread-safe.
    """

    def __init__(self, connection_factory=pika.BlockingConnection):
        self._connection_factory = connection_factory
        self._instance = None
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def instance(self):
        return self._instance

    def _is_live(self, instance):
        if instance is None:
            return False
        if instance.pid != os.getpid():
            # Inherited through fork: the socket belongs to the parent process
            self.logger.warning(
                "action: rabbitmq_connect | result: in_progress | msg: discarding handle created by pid %s",
                instance.pid,
            )
            return False
        return instance.is_connected()

    def _discard(self, connection):
        if connection.is_closed:
            return
        try:
            connection.close()
        except AMQPError as e:
            self.logger.warning(f"action: connection_close | result: fail | error: {e}")

    @staticmethod
    def _connection_parameters(config):
        parameters = pika.URLParameters(config.to_url_conn())
        parameters.heartbeat = config.heartbeat
        parameters.blocked_connection_timeout = config.blocked_connection_timeout
        return parameters

    def acquire(self, config):
        """Return the shared handle and a ConnectionResult describing how it was obtained"""
        result = ConnectionResult(debug_mode=config.debug_mode)

        if not config.enabled:
            result.message = BROKER_UNAVAILABLE
            result.error = RabbitMqConnectionError(BROKER_UNAVAILABLE)
            return RabbitMq(config=config), result

        with self._lock:
            if self._is_live(self._instance):
                result.connected = True
                result.message = "Connection reused"
                result.pid = self._instance.pid
                return self._instance, result

            try:
                connection = self._connection_factory(
                    self._connection_parameters(config)
                )
            except (AMQPError, OSError, ValueError) as e:
                self.logger.error(f"action: rabbitmq_connect | result: fail | error: {e}")
                result.error = e
                result.message = str(e)
                return RabbitMq(config=config), result

            try:
                channel = connection.channel()
            except AMQPError as e:
                self.logger.error(f"action: init_channel_setup | result: fail | error: {e}")
                self._discard(connection)
                result.error = e
                result.message = str(e)
                return RabbitMq(config=config), result

            if config.debug_mode:
                self.logger.info("action: rabbitmq_config | result: success | config: %s", config.to_json())
                self.logger.info(
                    "action: rabbitmq_connect | result: success | address: %s:%s | vhost: %s",
                    config.host,
                    config.port,
                    config.vhost,
                )

            pid = os.getpid()
            self._instance = RabbitMq(connection, channel, config=config, pid=pid)
            result.connected = True
            result.new_instance = True
            result.message = "Connection established"
            result.pid = pid
            self.logger.info("action: rabbitmq_connect | result: success | pid: %s", pid)
            return self._instance, result

    def close(self):
        """Close the shared handle and clear the slot so the next acquire() reconnects"""
        with self._lock:
            instance, self._instance = self._instance, None
        if instance is not None:
            instance.close()


_manager = ConnectionManager()


def new_client(config):
    """Acquire the process-wide RabbitMq handle"""
    return _manager.acquire(config)


def close_client():
    _manager.close()


def default_manager():
    return _manager
