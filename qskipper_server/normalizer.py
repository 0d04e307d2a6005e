"""Tolerant decoding of QSkipper backend payloads.

The backend is loose about types and shapes: prices arrive as numbers or
strings, dates in half a dozen formats, list endpoints either wrap their
records in an envelope or return a bare array, and create endpoints answer
with an id, a record, a bare string or nothing useful at all. Everything in
this module absorbs field-level problems locally and only raises
``DecodeFailure`` when the top-level body is not JSON at all.
"""

import base64
import binascii
import json
import logging
import re
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Optional, TypeVar, Union

from bs4 import BeautifulSoup
from pydantic import ValidationError

from .errors import DecodeFailure
from .models import (
    PLACEHOLDER_ID_PREFIX,
    CreatedId,
    CreatedRecord,
    CreateResult,
    Order,
    OrderItem,
    Product,
    Unparseable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ZERO = Decimal("0")

# Keys under which create endpoints have been seen to return the new id
DEFAULT_ID_KEYS = ("productId", "_id", "id", "restaurantid")

_EMPTY_SIGNAL = re.compile(
    r"\bno\b.*\bfound\b|\bnot found\b|\bno records\b|\bempty\b", re.IGNORECASE
)
_BARE_ID = re.compile(r"[A-Za-z0-9_\-:.]{6,128}")


def _as_text(body: Union[bytes, str, None]) -> str:
    if body is None:
        return ""
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return body


def _first_present(raw: dict, *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_id(value: Any) -> str:
    """Ids come as strings, numbers or populated sub-documents."""
    if isinstance(value, dict):
        value = _first_present(value, "_id", "id")
    if value is None or isinstance(value, bool):
        return ""
    return str(value)


# Scalar coercion


def coerce_decimal(value: Any) -> Decimal:
    """
    Coerce a price/amount/quantity field to a non-negative Decimal.

    Native numbers are tried first, then numeric strings. Anything else,
    including NaN, infinities and negative amounts, becomes zero.
    """
    if value is None or isinstance(value, bool):
        return ZERO

    try:
        if isinstance(value, Decimal):
            number = value
        elif isinstance(value, (int, float)):
            number = Decimal(str(value))
        elif isinstance(value, str):
            number = Decimal(value.strip().replace(",", ""))
        else:
            logger.debug(f"Unsupported numeric type {type(value).__name__}, using 0")
            return ZERO
    except (InvalidOperation, ValueError):
        logger.debug(f"Could not parse numeric value {value!r}, using 0")
        return ZERO

    if not number.is_finite():
        return ZERO
    if number < 0:
        logger.warning(f"Negative amount {value!r} clamped to 0")
        return ZERO
    return number


def coerce_int(value: Any, default: int = 0) -> int:
    """Coerce a count/minutes field (int, float or numeric string) to a non-negative int."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        if value != value or abs(value) == float("inf"):
            return default
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return default
        if not number.is_finite():
            return default
    else:
        return default

    if number < 0:
        logger.warning(f"Negative count {value!r} clamped to 0")
        return 0
    return int(number.to_integral_value(rounding=ROUND_HALF_UP))


def coerce_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes", "y", "on"):
            return True
        if lowered in ("false", "0", "no", "n", "off"):
            return False
    return default


# Dates


def _strict_iso(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S%z")


def _iso_fractional(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%f%z")


def _utc(fmt: str) -> Callable[[str], datetime]:
    def parse(value: str) -> datetime:
        return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)

    return parse


def _local(fmt: str) -> Callable[[str], datetime]:
    def parse(value: str) -> datetime:
        return datetime.strptime(value, fmt).astimezone()

    return parse


def _offset(fmt: str) -> Callable[[str], datetime]:
    def parse(value: str) -> datetime:
        return datetime.strptime(value, fmt)

    return parse


DATE_PARSERS: list[tuple[str, Callable[[str], datetime]]] = [
    ("iso8601", _strict_iso),
    ("iso8601-fractional", _iso_fractional),
    ("yyyy-MM-dd'T'HH:mm:ss.SSS'Z'", _utc("%Y-%m-%dT%H:%M:%S.%fZ")),
    ("yyyy-MM-dd'T'HH:mm:ss'Z'", _utc("%Y-%m-%dT%H:%M:%SZ")),
    ("yyyy-MM-dd'T'HH:mm:ssZ", _offset("%Y-%m-%dT%H:%M:%S%z")),
    ("yyyy-MM-dd'T'HH:mm:ss.SSSZ", _offset("%Y-%m-%dT%H:%M:%S.%f%z")),
    ("yyyy-MM-dd", _local("%Y-%m-%d")),
    ("yyyy-MM-dd HH:mm:ss", _local("%Y-%m-%d %H:%M:%S")),
]


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a backend timestamp into an aware datetime.

    Formats are tried in DATE_PARSERS order and the first match wins. Epoch
    numbers (seconds or milliseconds) are accepted too. Returns None, never
    raises, when nothing matches.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning(f"Failed to parse epoch date: {value}")
            return None
    if not isinstance(value, str):
        logger.warning(f"Failed to parse date of type {type(value).__name__}")
        return None

    text = value.strip()
    for label, parser in DATE_PARSERS:
        try:
            parsed = parser(text)
        except ValueError:
            continue
        logger.debug(f"Parsed date {text!r} as {label}")
        return parsed

    logger.warning(f"Failed to parse date: {text}")
    return None


# Body sniffing


def looks_like_html(text: Union[bytes, str, None]) -> bool:
    """True for HTML error pages (doctype or html tag near the start)."""
    head = _as_text(text).lstrip()[:1024].lower()
    return head.startswith("<!doctype") or "<html" in head


def html_title(text: Union[bytes, str]) -> Optional[str]:
    """Title of an HTML page, used to describe gateway error pages."""
    soup = BeautifulSoup(_as_text(text), "html.parser")
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    return None


def load_json(body: Union[bytes, str, None]) -> Any:
    """Parse a JSON body or raise DecodeFailure."""
    text = _as_text(body)
    try:
        return json.loads(text)
    except ValueError as e:
        raise DecodeFailure(f"Response is not valid JSON: {text[:120]!r}") from e


def extract_message(payload: Any) -> Optional[str]:
    """Best-effort human message from an error or status body."""
    if not isinstance(payload, dict):
        return payload if isinstance(payload, str) and payload.strip() else None
    for key in ("message", "error", "msg"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    data = payload.get("data")
    if isinstance(data, dict):
        return extract_message(data)
    return None


def is_empty_signal(payload: Any) -> bool:
    """True for "no records found" style bodies."""
    message = extract_message(payload)
    return bool(message and _EMPTY_SIGNAL.search(message))


def extract_error_message(body: Union[bytes, str, None], status_code: int) -> str:
    text = _as_text(body)
    if looks_like_html(text):
        title = html_title(text)
        if title:
            return f"{title} (status {status_code})"
    else:
        try:
            message = extract_message(json.loads(text))
        except ValueError:
            message = None
        if message:
            return message
    return f"Server error with status code: {status_code}"


# Records


def normalize_order_item(raw: dict) -> OrderItem:
    return OrderItem(
        id=_as_id(_first_present(raw, "_id", "productId", "id")),
        name=str(_first_present(raw, "name", "product_name") or "Unknown Item"),
        quantity=coerce_int(raw.get("quantity")),
        price=coerce_decimal(_first_present(raw, "price", "product_price")),
    )


def normalize_order(raw: dict) -> Order:
    """Build an Order from one element of the all_orders array."""
    order_id = _as_id(_first_present(raw, "_id", "id"))
    if not order_id:
        raise ValueError("order has no id")

    raw_items = _first_present(raw, "items", "products") or []
    items = []
    for raw_item in raw_items if isinstance(raw_items, list) else []:
        if isinstance(raw_item, dict):
            items.append(normalize_order_item(raw_item))

    schedule_raw = raw.get("scheduleDate")
    order_time_raw = _first_present(raw, "Time", "createdAt", "orderTime")

    return Order(
        id=order_id,
        restaurant_id=_as_id(_first_present(raw, "resturant", "restaurant", "restaurantId")),
        user_id=_as_id(_first_present(raw, "userID", "userId", "user")),
        status=str(raw.get("status") or ""),
        total_amount=coerce_decimal(_first_present(raw, "totalAmount", "totalPrice", "total")),
        items=items,
        cook_time=coerce_int(raw.get("cookTime")),
        take_away=coerce_bool(raw.get("takeAway")),
        schedule_date=parse_date(schedule_raw),
        order_time=parse_date(order_time_raw),
    )


def _decode_image_field(value: Any) -> Optional[bytes]:
    if isinstance(value, dict):
        value = value.get("data")
    if not isinstance(value, str) or not value:
        return None
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


def normalize_product(raw: dict) -> Product:
    """Build a Product from one element of a products array."""
    name = _first_present(raw, "product_name", "name")
    if name is None:
        raise ValueError("product has no name")

    price = coerce_decimal(_first_present(raw, "product_price", "price"))
    image_url = raw.get("image_url")

    return Product(
        id=_as_id(_first_present(raw, "_id", "id", "productId")),
        name=str(name),
        description=str(raw.get("description") or ""),
        price=int(price.to_integral_value(rounding=ROUND_HALF_UP)),
        category=str(_first_present(raw, "food_category", "category") or ""),
        restaurant_id=_as_id(_first_present(raw, "restaurant_id", "restaurantId", "resturant")),
        is_available=coerce_bool(raw.get("availability"), True),
        is_featured=coerce_bool(_first_present(raw, "featured", "isFeatured")),
        extra_time=coerce_int(raw.get("extraTime")),
        rating=float(coerce_decimal(raw.get("rating"))),
        image_data=_decode_image_field(raw.get("product_photo64Image")),
        image_url=image_url if isinstance(image_url, str) and image_url else None,
    )


def _decode_records(records: list, decoder: Callable[[dict], T]) -> list[T]:
    decoded = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            logger.warning(f"Skipping non-object record at index {index}")
            continue
        try:
            decoded.append(decoder(record))
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Skipping record at index {index}: {e}")
    return decoded


def decode_list(
    body: Union[bytes, str, None],
    key: str,
    decoder: Callable[[dict], T],
) -> list[T]:
    """
    Decode a list endpoint body.

    The ``{key: [...]}`` envelope is tried first, then a bare array. Empty
    bodies, HTML error pages, "no records" messages and envelopes without the
    array all decode to an empty list.
    """
    text = _as_text(body)
    if not text.strip():
        return []
    if looks_like_html(text):
        logger.warning(f"HTML page received where '{key}' list was expected, treating as empty")
        return []

    payload = load_json(text)

    if isinstance(payload, list):
        logger.info(f"Decoded bare array of {len(payload)} record(s)")
        return _decode_records(payload, decoder)

    if isinstance(payload, dict):
        for candidate in (key, "data"):
            records = payload.get(candidate)
            if isinstance(records, list):
                return _decode_records(records, decoder)
        if is_empty_signal(payload):
            logger.info(f"No-results message received: {extract_message(payload)}")
        else:
            logger.info(f"Envelope without '{key}' array (keys: {list(payload.keys())}), treating as empty")
        return []

    if is_empty_signal(payload):
        return []
    raise DecodeFailure(f"Unexpected top-level JSON type for '{key}' list: {type(payload).__name__}")


def decode_create_result(
    body: Union[bytes, str, None], id_keys: tuple[str, ...] = DEFAULT_ID_KEYS
) -> CreateResult:
    """Classify a 2xx create/update response body."""
    text = _as_text(body).strip()
    if not text or looks_like_html(text):
        return Unparseable(raw=text[:200])

    try:
        payload = json.loads(text)
    except ValueError:
        if _BARE_ID.fullmatch(text):
            return CreatedId(id=text)
        return Unparseable(raw=text[:200])

    if isinstance(payload, str):
        payload = payload.strip()
        return CreatedId(id=payload) if payload else Unparseable(raw=text[:200])

    if not isinstance(payload, dict):
        return Unparseable(raw=text[:200])

    for nested_key in ("product", "data", "record"):
        nested = payload.get(nested_key)
        if isinstance(nested, dict) and _first_present(nested, "product_name", "name") is not None:
            try:
                record = normalize_product(nested)
            except (ValueError, ValidationError) as e:
                logger.warning(f"Nested '{nested_key}' record did not decode: {e}")
                continue
            if record.id:
                return CreatedRecord(product=record)

    for key in id_keys:
        value = payload.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return CreatedId(id=str(value))

    return Unparseable(raw=text[:200])


def placeholder_id() -> str:
    return f"{PLACEHOLDER_ID_PREFIX}{uuid.uuid4().hex}"


def resolve_created_product(submitted: Product, result: CreateResult) -> Product:
    """Apply a create result to the product that was submitted."""
    if isinstance(result, CreatedRecord):
        record = result.product
        if record.image_data is None and submitted.image_data is not None:
            record = record.model_copy(update={"image_data": submitted.image_data})
        return record
    if isinstance(result, CreatedId):
        return submitted.model_copy(update={"id": result.id})

    synthetic = placeholder_id()
    logger.warning(f"Create response had no usable id, using placeholder {synthetic}")
    return submitted.model_copy(update={"id": synthetic})


def decode_completion(body: Union[bytes, str, None]) -> tuple[bool, str]:
    """Success flag and message of a status-change response (default: success)."""
    text = _as_text(body)
    try:
        payload = json.loads(text) if text.strip() else {}
    except ValueError:
        return True, ""
    if not isinstance(payload, dict):
        return True, ""

    success = payload.get("success")
    if not isinstance(success, bool):
        data = payload.get("data")
        success = data.get("success") if isinstance(data, dict) else None
    return (success if isinstance(success, bool) else True), extract_message(payload) or ""
