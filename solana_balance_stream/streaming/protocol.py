"""JSON-RPC messages exchanged with the account subscription endpoint."""

import json
import logging
from typing import Dict, Any, Optional, Tuple, Union
from enum import Enum

from ..data.models import MAX_LAMPORTS
from .errors import MalformedMessageError

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"

# Request ids are fixed per purpose so responses can be told apart.
SUBSCRIBE_ID = 1
UNSUBSCRIBE_ID = 2
KEEPALIVE_ID = 3

ACCOUNT_NOTIFICATION = "accountNotification"


class MessageKind(Enum):
    """Classification of inbound messages."""
    SUBSCRIBE_ACK = "subscribe_ack"
    UNSUBSCRIBE_ACK = "unsubscribe_ack"
    KEEPALIVE = "keepalive"
    ACCOUNT_NOTIFICATION = "account_notification"
    OTHER = "other"


def subscribe_request(address: str, encoding: str = "jsonParsed",
                      commitment: str = "confirmed") -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": SUBSCRIBE_ID,
        "method": "accountSubscribe",
        "params": [address, {"encoding": encoding, "commitment": commitment}],
    }


def unsubscribe_request(subscription_id: int) -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": UNSUBSCRIBE_ID,
        "method": "accountUnsubscribe",
        "params": [subscription_id],
    }


def keepalive_request() -> Dict[str, Any]:
    return {
        "jsonrpc": JSONRPC_VERSION,
        "id": KEEPALIVE_ID,
        "method": "getHealth",
    }


def decode_message(raw: Union[str, bytes]) -> Dict[str, Any]:
    """Decode a raw frame into a JSON object.

    Raises:
        MalformedMessageError: If the frame is not a JSON object
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessageError(f"Expected JSON object, got {type(data).__name__}")
    return data


def classify(message: Dict[str, Any]) -> MessageKind:
    """Classify a decoded message by request id or notification method."""
    if message.get("method") == ACCOUNT_NOTIFICATION:
        return MessageKind.ACCOUNT_NOTIFICATION

    msg_id = message.get("id")
    if msg_id == SUBSCRIBE_ID:
        return MessageKind.SUBSCRIBE_ACK
    if msg_id == KEEPALIVE_ID:
        return MessageKind.KEEPALIVE
    if msg_id == UNSUBSCRIBE_ID:
        return MessageKind.UNSUBSCRIBE_ACK
    return MessageKind.OTHER


def parse_subscribe_ack(message: Dict[str, Any]) -> Tuple[Optional[int], Optional[Dict[str, Any]]]:
    """Extract ``(subscription_id, error)`` from a subscribe response.

    Exactly one of the two is set for a well-formed response.

    Raises:
        MalformedMessageError: If neither a result nor an error is present
    """
    error = message.get("error")
    if error is not None:
        if not isinstance(error, dict):
            error = {"message": str(error)}
        return None, error

    result = message.get("result")
    if isinstance(result, bool) or not isinstance(result, int):
        raise MalformedMessageError(f"Subscribe response has no subscription id: {message!r}")
    return result, None


def _require_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedMessageError(f"{name} must be an integer, got {value!r}")
    return value


def parse_account_notification(message: Dict[str, Any]) -> Tuple[int, Optional[int], Optional[int]]:
    """Extract ``(subscription_id, slot, lamports)`` from a notification.

    ``lamports`` is None when the account value is null, which the node
    sends for closed or non-existent accounts.

    Raises:
        MalformedMessageError: If required fields are missing or invalid
    """
    try:
        params = message["params"]
        subscription_id = params["subscription"]
        result = params["result"]
        slot = result["context"]["slot"]
        value = result["value"]
    except (KeyError, TypeError) as e:
        raise MalformedMessageError(f"Notification missing field {e}") from e

    subscription_id = _require_int(subscription_id, "subscription")
    slot = _require_int(slot, "slot")

    if value is None:
        return subscription_id, slot, None

    if not isinstance(value, dict) or "lamports" not in value:
        raise MalformedMessageError(f"Notification value has no lamports: {value!r}")

    lamports = _require_int(value["lamports"], "lamports")
    if not 0 <= lamports <= MAX_LAMPORTS:
        raise MalformedMessageError(f"lamports out of range: {lamports}")

    return subscription_id, slot, lamports
