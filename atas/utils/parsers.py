import re
import html
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

TRUTHY = {"true", "1", "sim", "s", "yes"}
FALSY = {"false", "0", "nao", "não", "n", "no"}


def clean_text(text: Optional[str]) -> Optional[str]:
    """
    Unescapes HTML entities and normalizes whitespace. Blank text becomes None.
    """
    if text is None:
        return None

    # Unescape HTML entities (e.g., &quot; -> ", &amp; -> &)
    cleaned = html.unescape(text)

    # Non-breaking spaces, tabs and line breaks collapse into single spaces
    cleaned = re.sub(r'\s+', ' ', cleaned).strip()
    return cleaned or None


def _raw(record: dict, key: str) -> Any:
    value = record.get(key)
    if isinstance(value, str) and not value.strip():
        return None
    return value


def get_str(record: dict, key: str) -> Optional[str]:
    value = _raw(record, key)
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return clean_text(str(value))


def get_int(record: dict, key: str) -> Optional[int]:
    value = _raw(record, key)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def get_decimal(record: dict, key: str) -> Optional[Decimal]:
    value = _raw(record, key)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    text = str(value).strip()
    # "1234,56" style
    if ',' in text and '.' not in text:
        text = text.replace(',', '.')
    try:
        return Decimal(text)
    except InvalidOperation:
        return None


def get_datetime(record: dict, key: str) -> Optional[datetime]:
    value = _raw(record, key)
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.strptime(text.split('.')[0], "%Y-%m-%d %H:%M:%S")
            except ValueError:
                return None
    if parsed.tzinfo:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def get_date(record: dict, key: str) -> Optional[date]:
    value = _raw(record, key)
    if value is None:
        return None
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        parsed = get_datetime(record, key)
        return parsed.date() if parsed else None


def get_bool(record: dict, key: str, default: bool = False) -> bool:
    value = _raw(record, key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in TRUTHY:
        return True
    if text in FALSY:
        return False
    return default
