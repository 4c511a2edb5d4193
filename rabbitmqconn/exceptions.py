class RabbitMqError(Exception):
    pass


class RabbitMqConnectionError(RabbitMqError):
    """Dial or channel-open failure, or use of an empty (unavailable) handle"""


class TopologyError(RabbitMqError):
    """Exchange/queue declaration, deletion or binding rejected by the broker"""


class PublishError(RabbitMqError):
    """Payload serialization or publish rejected"""


class SubscribeError(RabbitMqError):
    """Declaration, binding or consume start rejected while subscribing"""


class MessageUnavailableError(RabbitMqError):
    """The message feature is switched off in configuration"""

    def __init__(self, operation):
        super().__init__(f"{operation}, message unavailable (enabled = false)")
        self.operation = operation
