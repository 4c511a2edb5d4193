import os
import socket
import threading
import time
import uuid
import queue as pyqueue

import pytest

from rabbitmqconn.common.config import (
    ExchangeConfig,
    MessageConfig,
    QueueConfig,
    RabbitMqConfig,
)
from rabbitmqconn.connection import ConnectionManager
from rabbitmqconn.consumer import CancellationToken
from tests.fakes import FakeBroker


# --------- Common helpers for the tests ----------


class SubscriberRunner:
    """
    Runs RabbitMqService.subscribe in a separate thread, putting the decoded
    body of every delivery in self.messages (queue.Queue).
    """

    def __init__(self, service, topic, queue_name):
        self.service = service
        self.topic = topic
        self.queue_name = queue_name
        self.messages = pyqueue.Queue()
        self.token = CancellationToken()
        self.error = None
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._stopped = threading.Event()

    def _run(self):
        def _cb(delivery):
            self.messages.put(delivery.json())

        try:
            self.service.subscribe(self.topic, self.queue_name, _cb, self.token)
        except Exception as e:  # pylint: disable=broad-exception-caught
            self.error = e
        finally:
            self._stopped.set()

    def start(self):
        self._thread.start()

    def stop(self):
        self.token.cancel()
        self._stopped.wait(timeout=5.0)

    def join(self):
        self._thread.join(timeout=5.0)


def unique_name(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}"


def wait_until(predicate, timeout: float, check_interval: float = 0.05) -> bool:
    """
    Evaluates predicate() every check_interval until timeout.
    Returns True if it held, False if the timeout expired.
    """
    end = time.time() + timeout
    while time.time() < end:
        if predicate():
            return True
        time.sleep(check_interval)
    return False


def make_config(**overrides):
    message = overrides.pop(
        "message",
        MessageConfig(
            enabled=True,
            exchange=ExchangeConfig(name="orders", kind="fanout", durable=True),
            queue=QueueConfig(name="orders_queue", durable=True),
        ),
    )
    overrides.setdefault("host", "localhost")
    return RabbitMqConfig(message=message, **overrides)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def broker():
    return FakeBroker()


@pytest.fixture
def manager(broker):
    return ConnectionManager(connection_factory=broker.connect)


@pytest.fixture
def client(manager, config):
    handle, result = manager.acquire(config)
    assert result.connected
    yield handle
    manager.close()


# --------- Real broker ----------


@pytest.fixture(scope="session")
def host():
    return os.environ.get("MW_HOST", "localhost")


@pytest.fixture(scope="session")
def live_broker(host):
    try:
        with socket.create_connection((host, 5672), timeout=1.0):
            pass
    except OSError:
        pytest.skip(f"RabbitMQ not reachable at {host}:5672")
    return host
