import math
import re
from datetime import date, datetime
from typing import Any, Optional

MAX_TEXT_LENGTH = 1000
MAX_LIST_ITEMS = 100
NUMBER_MIN = 0
NUMBER_MAX = 999999

# Parameter binding already protects the datastore; these are stripped as a second layer.
_SQL_CHARACTERS = re.compile(r"['\";\\]")
_SQL_COMMENT_TOKENS = ("--", "/*", "*/")
_LIST_SEPARATORS = re.compile(r"[,;\n]")
_THOUSANDS_GROUPED = re.compile(r"^\d{1,3}(,\d{3})+(\.\d+)?$")


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        if value.hour == 0 and value.minute == 0 and value.second == 0:
            return value.date().isoformat()
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def sanitize_string(value: Any) -> Optional[str]:
    text = cell_text(value)
    text = _SQL_CHARACTERS.sub("", text)
    for token in _SQL_COMMENT_TOKENS:
        text = text.replace(token, "")
    text = text.strip()[:MAX_TEXT_LENGTH].strip()
    return text or None


def sanitize_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        # Only strict thousands grouping drops commas; "1,5" is not a number.
        if _THOUSANDS_GROUPED.match(text):
            text = text.replace(",", "")
        try:
            number = float(text)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    if number < NUMBER_MIN or number > NUMBER_MAX:
        return None
    return number


def sanitize_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items: list[Any] = _LIST_SEPARATORS.split(value)
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        return []
    cleaned = [sanitize_string(item) for item in items]
    return [item for item in cleaned if item][:MAX_LIST_ITEMS]


def sanitize_mapping(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return {str(key): item for key, item in value.items()}
    return {}
