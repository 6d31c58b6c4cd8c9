"""
Value codec between MongoDB documents and file encodings.

Two encodings are supported:
- Extended JSON: ObjectIds, dates and typed numbers are tagged with marker
  keys ($oid, $date, $numberInt, $numberLong, $numberDouble, $numberDecimal)
- CSV: every value becomes a flat string; cells are re-typed on the way back
  in from their text and their column name

All conversion functions are total. A malformed tagged value decodes to its
raw payload instead of raising.
"""

import json
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union

from bson import Decimal128, ObjectId, json_util

logger = logging.getLogger(__name__)

OBJECT_ID_PATTERN = re.compile(r"[0-9a-fA-F]{24}")
ISO_DATE_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z")
ISO_DATE_LIKE_PATTERN = re.compile(
    r"\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d{1,6})?)?)?"
    r"(?:Z|[+-]\d{2}:?\d{2})?"
)
INT_PATTERN = re.compile(r"[+-]?\d+")
NUMBER_PATTERN = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")

DATE_KEY_SUFFIXES = ("At", "Dt")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

Value = Union[None, bool, int, float, str, datetime, ObjectId, Decimal128, list, dict]


# =============================================================================
# Validation and scalar helpers
# =============================================================================

def is_valid_object_id(text: Any) -> bool:
    """True iff text is exactly 24 hex characters (either case)."""
    return isinstance(text, str) and OBJECT_ID_PATTERN.fullmatch(text) is not None


def is_valid_date(text: Any) -> bool:
    """True iff text is YYYY-MM-DDTHH:mm:ss.sssZ and names a real instant."""
    if not isinstance(text, str) or ISO_DATE_PATTERN.fullmatch(text) is None:
        return False
    try:
        parse_datetime(text)
    except ValueError:
        return False
    return True


def parse_datetime(text: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z" or a numeric offset; a timestamp without zone is
    taken to be UTC. Precision is truncated to milliseconds, which is what
    BSON dates store.

    Raises:
        ValueError: If text is not ISO-8601
    """
    value = text.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(microsecond=parsed.microsecond // 1000 * 1000)


def format_datetime(value: datetime) -> str:
    """Format as YYYY-MM-DDTHH:mm:ss.sssZ; naive datetimes are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return f"{value:%Y-%m-%dT%H:%M:%S}.{value.microsecond // 1000:03d}Z"


def datetime_from_millis(millis: int) -> datetime:
    return EPOCH + timedelta(milliseconds=millis)


def coerce_string(text: str) -> Union[str, ObjectId, datetime]:
    """Promote a hex id or canonical timestamp string; leave anything else alone."""
    if is_valid_object_id(text):
        return ObjectId(text)
    if is_valid_date(text):
        return parse_datetime(text)
    return text


# =============================================================================
# Extended JSON
# =============================================================================

_UNTAGGED = object()


def decode_extended_json(raw: Any) -> Value:
    """
    Convert parsed extended JSON into native document values.

    Tagged single-key objects become their typed value. String fields of
    untagged objects are promoted by coerce_string(). Lists and nested
    objects are converted recursively.

    Args:
        raw: Output of json.loads (or one element of a streamed array)

    Returns:
        The native value
    """
    if isinstance(raw, list):
        return [decode_extended_json(item) for item in raw]

    if isinstance(raw, dict):
        tagged = _decode_tagged(raw)
        if tagged is not _UNTAGGED:
            return tagged
        return {key: _decode_field(value) for key, value in raw.items()}

    return raw


def _decode_field(value: Any) -> Value:
    if isinstance(value, str):
        return coerce_string(value)
    return decode_extended_json(value)


def _decode_tagged(raw: Dict[str, Any]) -> Any:
    if len(raw) != 1:
        return _UNTAGGED

    (tag, payload), = raw.items()
    if not tag.startswith("$"):
        return _UNTAGGED

    if tag == "$oid":
        return ObjectId(payload) if is_valid_object_id(payload) else payload

    if tag == "$date":
        return _decode_date(payload)

    if tag in ("$numberInt", "$numberLong"):
        try:
            return int(payload)
        except (TypeError, ValueError):
            return payload

    if tag == "$numberDouble":
        try:
            return float(payload)
        except (TypeError, ValueError):
            return payload

    if tag == "$numberDecimal":
        try:
            return Decimal128(payload)
        except (ArithmeticError, TypeError, ValueError):
            return payload

    # $binary, $timestamp, $regularExpression, ...
    try:
        converted = json_util.object_hook(dict(raw))
    except (TypeError, ValueError, KeyError) as e:
        logger.debug(f"Leaving {tag} value as-is: {e}")
        return payload
    if isinstance(converted, dict):
        return _UNTAGGED
    return converted


def _decode_date(payload: Any) -> Any:
    if isinstance(payload, str):
        try:
            return parse_datetime(payload)
        except ValueError:
            return payload

    if isinstance(payload, dict) and "$numberLong" in payload:
        millis = payload["$numberLong"]
        try:
            return datetime_from_millis(int(millis))
        except (TypeError, ValueError, OverflowError):
            return millis

    if isinstance(payload, (int, float)) and not isinstance(payload, bool):
        try:
            return datetime_from_millis(int(payload))
        except OverflowError:
            return payload

    return payload


def encode_for_json(value: Any) -> Any:
    """
    Convert native document values into JSON-serializable extended JSON.

    Inverse of decode_extended_json() for ObjectId, datetime and Decimal128.
    Other BSON types are encoded by bson.json_util.

    Raises:
        TypeError: If a value has no JSON representation
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, ObjectId):
        return {"$oid": str(value)}
    if isinstance(value, datetime):
        return {"$date": format_datetime(value)}
    if isinstance(value, Decimal128):
        return {"$numberDecimal": str(value)}
    if isinstance(value, dict):
        return {str(key): encode_for_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_for_json(item) for item in value]
    return json_util.default(value, json_options=json_util.RELAXED_JSON_OPTIONS)


# =============================================================================
# CSV
# =============================================================================

def decode_csv_cell(key: str, text: str) -> Value:
    """
    Re-type one CSV cell.

    Rules, first match wins:
    1. "" stays "" (never None)
    2. "_id" column holding 24 hex characters -> ObjectId
    3. column ending in "At"/"Dt" holding an ISO-like date -> datetime
    4. any 24 hex characters -> ObjectId
    5. canonical YYYY-MM-DDTHH:mm:ss.sssZ -> datetime
    6. number -> int or float
    7. true/false in any case -> bool
    8. JSON text -> decode_extended_json() of the parsed value
    9. anything else stays a string

    Column-name hints run before the generic shape checks.
    """
    if text == "":
        return ""

    if key == "_id" and is_valid_object_id(text):
        return ObjectId(text)

    if key.endswith(DATE_KEY_SUFFIXES) and ISO_DATE_LIKE_PATTERN.fullmatch(text):
        try:
            return parse_datetime(text)
        except ValueError:
            pass

    if is_valid_object_id(text):
        return ObjectId(text)

    if is_valid_date(text):
        return parse_datetime(text)

    number = _parse_number(text)
    if number is not None:
        return number

    lowered = text.lower()
    if lowered in ("true", "false"):
        return lowered == "true"

    try:
        parsed = json.loads(text)
    except ValueError:
        return text
    return decode_extended_json(parsed)


def _parse_number(text: str) -> Optional[Union[int, float]]:
    if INT_PATTERN.fullmatch(text):
        return int(text)
    if NUMBER_PATTERN.fullmatch(text):
        return float(text)
    return None


def encode_csv_value(value: Any) -> str:
    """Flatten a single value to its CSV cell text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(encode_for_json(value), ensure_ascii=False, separators=(",", ":"))
    if isinstance(value, float):
        return repr(value)
    return str(value)


def encode_for_csv(document: Dict[str, Any]) -> Dict[str, str]:
    """Flatten a document into a {column: cell text} mapping."""
    return {str(key): encode_csv_value(value) for key, value in document.items()}
