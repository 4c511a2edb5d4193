import os

import pytest
from pika.exceptions import AMQPConnectionError, AMQPChannelError

from rabbitmqconn.connection import BROKER_UNAVAILABLE, RabbitMq
from rabbitmqconn.exceptions import RabbitMqConnectionError
from tests.conftest import make_config


def test_acquire_creates_new_instance(manager, broker, config):
    client, result = manager.acquire(config)

    assert result.connected
    assert result.new_instance
    assert result.error is None
    assert result.pid == os.getpid()
    assert result.message == "Connection established"
    assert client.is_connected()
    assert manager.instance is client
    assert len(broker.connections) == 1


def test_acquire_twice_reuses_handle(manager, broker, config):
    first, _ = manager.acquire(config)
    second, result = manager.acquire(make_config(host="other-host", port=5673))

    assert second is first
    assert result.connected
    assert not result.new_instance
    assert len(broker.connections) == 1


def test_acquire_disabled_never_dials(manager, broker):
    client, result = manager.acquire(make_config(enabled=False))

    assert not result.connected
    assert not result.new_instance
    assert result.message == BROKER_UNAVAILABLE
    assert isinstance(result.error, RabbitMqConnectionError)
    assert client.is_empty()
    assert broker.connections == []
    assert manager.instance is None


def test_acquire_disabled_does_not_hand_out_live_instance(manager, config):
    manager.acquire(config)
    client, result = manager.acquire(make_config(enabled=False))

    assert not result.connected
    assert client is not manager.instance


def test_dial_failure_is_reported_not_raised(manager, broker, config):
    broker.dial_error = AMQPConnectionError("connection refused")

    client, result = manager.acquire(config)

    assert not result.connected
    assert result.error is broker.dial_error
    assert "connection refused" in result.message
    assert client.is_empty()
    assert manager.instance is None


def test_channel_failure_closes_connection(manager, broker, config):
    broker.channel_error = AMQPChannelError("channel refused")

    client, result = manager.acquire(config)

    assert not result.connected
    assert result.error is broker.channel_error
    assert client.is_empty()
    assert manager.instance is None
    assert broker.connections[0].is_closed


def test_connection_parameters_from_config(manager, broker):
    manager.acquire(make_config(host="rabbit", port=5673, username="app", password="pw", heartbeat=30))

    parameters = broker.connections[0].parameters
    assert parameters.host == "rabbit"
    assert parameters.port == 5673
    assert parameters.credentials.username == "app"
    assert parameters.heartbeat == 30
    assert parameters.blocked_connection_timeout == 300


def test_close_releases_channel_then_connection(manager, broker, config):
    client, _ = manager.acquire(config)
    connection = broker.connections[0]

    manager.close()

    assert connection.events == ["channel.close", "connection.close"]
    assert not client.is_connected()
    assert manager.instance is None


def test_close_is_idempotent(manager, broker, config):
    client, _ = manager.acquire(config)

    client.close()
    client.close()
    manager.close()
    manager.close()

    assert broker.connections[0].events == ["channel.close", "connection.close"]


def test_acquire_after_close_reconnects(manager, broker, config):
    first, _ = manager.acquire(config)
    manager.close()

    second, result = manager.acquire(config)

    assert second is not first
    assert result.new_instance
    assert len(broker.connections) == 2


def test_acquire_replaces_handle_closed_elsewhere(manager, broker, config):
    first, _ = manager.acquire(config)
    broker.connections[0].close()

    second, result = manager.acquire(config)

    assert second is not first
    assert result.new_instance


def test_acquire_discards_handle_from_parent_process(manager, broker, config):
    first, _ = manager.acquire(config)
    first.pid = os.getpid() + 1

    second, result = manager.acquire(config)

    assert second is not first
    assert result.new_instance
    assert not broker.connections[0].is_closed


def test_empty_handle_channel_raises():
    with pytest.raises(RabbitMqConnectionError):
        RabbitMq().channel


def test_channel_reopened_after_broker_closed_it(client, broker):
    old_channel = client.channel
    old_channel.is_closed = True

    assert client.channel is not old_channel
    assert client.channel is broker.connections[0].channels[-1]
