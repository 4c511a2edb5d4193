import dataclasses
import datetime
import decimal
import enum
import json
import logging
import uuid

JSON_CONTENT_TYPE = "application/json"


def _json_default(value):
    """Fallback encoder for the payload types json does not handle natively"""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (uuid.UUID, decimal.Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(
        "Object of type {} is not JSON serializable".format(type(value).__name__)
    )


def to_json(message):
    """Serialize an application payload to the JSON text put on the wire"""
    return json.dumps(message, default=_json_default, ensure_ascii=False)


def initialize_log(logging_level):
    """
    Python custom logging initialization

    Current timestamp is added to be able to identify in docker
    compose logs the date when the log has arrived
    """
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(message)s",
        level=logging_level,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
