import json
from datetime import date
from decimal import Decimal
from typing import Any


def json_serialize_fallback(obj: Any) -> Any:
    """
    JSON serialization fallback for non-standard types.

    Args:
        obj: Object to serialize

    Returns:
        Serializable representation of the object

    Raises:
        TypeError: If object is not serializable
    """
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    raise TypeError(f"Object of type {obj.__class__.__name__} is not JSON serializable")


def dumps(payload: Any) -> str:
    """Encode a payload using the fallback for Decimal and date values."""
    return json.dumps(payload, default=json_serialize_fallback)
