"""
JSON Serialization Helper - Converts dashboard values to JSON-compatible formats
"""

import json
import math
from dataclasses import asdict, is_dataclass
from datetime import datetime, date


def serialize_for_json(obj):
    """
    Recursively convert non-JSON-serializable objects to strings or native types.

    Handles:
    - datetime / date -> ISO format string
    - dataclass instances -> dict
    - NaN / Infinity -> None
    - whole-number floats (e.g. summed prices) -> int
    - dict/list/tuple/set -> recursively process
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif is_dataclass(obj) and not isinstance(obj, type):
        return serialize_for_json(asdict(obj))
    elif isinstance(obj, dict):
        return {str(key): serialize_for_json(value) for key, value in obj.items()}
    elif isinstance(obj, (list, tuple, set)):
        return [serialize_for_json(item) for item in obj]
    elif isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            return None
        if obj.is_integer():
            return int(obj)
        return obj
    else:
        return obj


def safe_json_dumps(obj, **kwargs):
    """Safely convert object to JSON string"""
    serialized = serialize_for_json(obj)
    return json.dumps(serialized, default=str, **kwargs)
