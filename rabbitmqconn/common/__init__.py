from .config import (
    AppConfig,
    ExchangeConfig,
    MessageConfig,
    QueueConfig,
    RabbitMqConfig,
    initialize_config,
    validate_exchange_config,
    validate_queue_config,
)
from .utils import JSON_CONTENT_TYPE, initialize_log, to_json

__all__ = [
    "AppConfig",
    "ExchangeConfig",
    "MessageConfig",
    "QueueConfig",
    "RabbitMqConfig",
    "initialize_config",
    "validate_exchange_config",
    "validate_queue_config",
    "JSON_CONTENT_TYPE",
    "initialize_log",
    "to_json",
]
