#!/usr/bin/env python3

import json
import logging
import os
import signal
import sys

from rabbitmqconn.common.config import initialize_config
from rabbitmqconn.common.utils import initialize_log
from rabbitmqconn.connection import close_client, new_client
from rabbitmqconn.consumer import CancellationToken
from rabbitmqconn.exceptions import RabbitMqError
from rabbitmqconn.messaging import RabbitMqService

USAGE = "usage: rabbitmqconn consume | rabbitmqconn publish '<json payload>'"


def run_consumer(service):
    """Consume from the configured queue until SIGTERM (or Ctrl+C)"""
    token = CancellationToken()

    def _signal_handler(signum, _frame):
        logging.info(
            "action: shutdown | result: in_progress | msg: received signal %s", signum
        )
        token.cancel()

    signal.signal(signal.SIGTERM, _signal_handler)
    service.consume_conf(token=token)


def run_publisher(service, payload):
    service.produce_conf(payload)
    logging.info("action: publish | result: success")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv or argv[0] not in ("consume", "publish") or (argv[0] == "publish" and len(argv) != 2):
        print(USAGE, file=sys.stderr)
        return 2

    payload = None
    if argv[0] == "publish":
        try:
            payload = json.loads(argv[1])
        except ValueError as e:
            print(f"Invalid JSON payload: {e}", file=sys.stderr)
            return 2

    try:
        # Initialize configuration
        app_config, rabbitmq_config = initialize_config(
            os.getenv("RABBITMQ_CONFIG_FILE", "config.ini")
        )

        # Initialize logging
        initialize_log(app_config.logging_level)

        logging.debug(
            "action: config | result: success | host: %s | port: %s | enabled: %s | message_enabled: %s",
            rabbitmq_config.host,
            rabbitmq_config.port,
            rabbitmq_config.enabled,
            rabbitmq_config.message.enabled,
        )

        client, result = new_client(rabbitmq_config)
        if not result.connected:
            logging.error(
                "action: rabbitmq_connect | result: fail | msg: %s", result.message
            )
            return 1

        try:
            service = RabbitMqService(client)
            if argv[0] == "consume":
                run_consumer(service)
            else:
                run_publisher(service, payload)
        finally:
            close_client()

    except KeyError as e:
        print(f"Configuration Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration Parse Error: {e}", file=sys.stderr)
        return 1
    except RabbitMqError as e:
        logging.error("action: rabbitmqconn_main | result: fail | error: %s", e)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
