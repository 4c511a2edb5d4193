import pytest

from rabbitmqconn import main as entrypoint
from rabbitmqconn.connection import ConnectionResult, RabbitMq


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.ini"
    path.write_text(
        "[DEFAULT]\n"
        "RABBITMQ_HOST = localhost\n"
        "RABBITMQ_MESSAGE_ENABLED = true\n"
        "RABBITMQ_EXCHANGE_NAME = orders\n"
    )
    monkeypatch.setenv("RABBITMQ_CONFIG_FILE", str(path))
    return path


@pytest.fixture
def fake_client(monkeypatch, manager):
    acquired = {}

    def _new_client(config):
        acquired["client"], result = manager.acquire(config)
        return acquired["client"], result

    monkeypatch.setattr(entrypoint, "new_client", _new_client)
    monkeypatch.setattr(entrypoint, "close_client", manager.close)
    return acquired


@pytest.mark.parametrize("argv", [[], ["unknown"], ["publish"], ["publish", "{}", "extra"]])
def test_usage_errors(argv, capsys):
    assert entrypoint.main(argv) == 2
    assert "usage" in capsys.readouterr().err


def test_invalid_payload(capsys):
    assert entrypoint.main(["publish", "{not json"]) == 2
    assert "Invalid JSON payload" in capsys.readouterr().err


def test_missing_config_file(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("RABBITMQ_CONFIG_FILE", str(tmp_path / "missing.ini"))
    assert entrypoint.main(["consume"]) == 1
    assert "Configuration Error" in capsys.readouterr().err


def test_publish_uses_configured_exchange(config_file, fake_client, broker):
    assert entrypoint.main(["publish", '{"id": 1}']) == 0

    assert broker.exchanges["orders"] == ("fanout", True)
    assert fake_client["client"].connection.is_closed


def test_unavailable_broker(config_file, monkeypatch):
    monkeypatch.setattr(
        entrypoint,
        "new_client",
        lambda config: (RabbitMq(config=config), ConnectionResult(message="broker unavailable")),
    )
    assert entrypoint.main(["publish", '{"id": 1}']) == 1
