"""
Named value transforms for field mapping rules, plus template rendering and
slug generation.

Transform names are configuration identifiers stored in mapping JSON
(`"transform": "padStart", "transformArgs": [5, "0"]`), so they keep their
camelCase spelling.
"""
import math
import re
from datetime import date, datetime, timezone
from typing import Any, Callable

from dateutil import parser as date_parser

SLUG_MAX_LENGTH = 100
SLUG_FALLBACK = "item"

_TEMPLATE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
_SLUG_STRIP = re.compile(r"[^a-z0-9-]")
_TITLE_WORD = re.compile(r"\w\S*")


# === Helpers ===

def to_display_string(value: Any) -> str:
    """Stringify the way stored JSON values read: true/false, 3 not 3.0."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_display_string(v) for v in value)
    return str(value)


def split_words(value: Any) -> list[str]:
    """Split on case boundaries and any non-alphanumeric run."""
    text = str(value)
    text = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", text)
    text = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1 \2", text)
    return [w for w in re.split(r"[\W_]+", text) if w]


def parse_date(value: Any) -> datetime:
    """ISO string, datetime or date -> datetime. Naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        parsed = date_parser.isoparse(value.strip())
    else:
        raise ValueError(f"Cannot parse date from {type(value).__name__}")

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, str) and not value.strip():
        return 0.0
    return float(value)


def _maybe_int(num: float):
    if isinstance(num, float) and num.is_integer():
        return int(num)
    return num


# === String case ===

def _title(value: Any) -> str:
    return _TITLE_WORD.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), str(value))


def _camel(value: Any) -> str:
    words = split_words(value)
    if not words:
        return ""
    return words[0].lower() + "".join(w.capitalize() for w in words[1:])


def _pascal(value: Any) -> str:
    return "".join(w.capitalize() for w in split_words(value))


def _snake(value: Any) -> str:
    return "_".join(w.lower() for w in split_words(value))


def _kebab(value: Any) -> str:
    return "-".join(w.lower() for w in split_words(value))


def _capital(value: Any) -> str:
    return " ".join(w.capitalize() for w in split_words(value))


# === String manipulation ===

def _truncate(value: Any, length: int = 100) -> str:
    return str(value)[: int(length)]


def _substring(value: Any, start: int = 0, end: int = None) -> str:
    text = str(value)
    start = max(int(start), 0)
    if end is None:
        return text[start:]
    end = max(int(end), 0)
    if start > end:
        start, end = end, start
    return text[start:end]


def _replace(value: Any, search: str, replacement: str = "") -> str:
    return re.sub(search, str(replacement), str(value))


def _split(value: Any, delimiter: str = ",") -> list[str]:
    return str(value).split(delimiter)


def _join(value: Any, delimiter: str = ", ") -> str:
    if not isinstance(value, (list, tuple)):
        return to_display_string(value)
    return delimiter.join(to_display_string(v) for v in value)


def _pad_start(value: Any, length: int, pad: str = " ") -> str:
    text = str(value)
    missing = int(length) - len(text)
    if missing <= 0 or not pad:
        return text
    return (pad * missing)[:missing] + text


def _pad_end(value: Any, length: int, pad: str = " ") -> str:
    text = str(value)
    missing = int(length) - len(text)
    if missing <= 0 or not pad:
        return text
    return text + (pad * missing)[:missing]


# === Numeric ===

def _round(value: Any, decimals: int = 0):
    factor = 10 ** int(decimals)
    # Half-up rounding, not banker's rounding
    return _maybe_int(math.floor(_number(value) * factor + 0.5) / factor)


def _to_fixed(value: Any, decimals: int = 2) -> str:
    return f"{_number(value):.{int(decimals)}f}"


# === Dates ===

def _format_date(value: Any, pattern: str = "%Y-%m-%d") -> str:
    return parse_date(value).strftime(pattern)


def _iso_date(value: Any) -> str:
    d = parse_date(value).astimezone(timezone.utc)
    return d.strftime("%Y-%m-%dT%H:%M:%S.") + f"{d.microsecond // 1000:03d}Z"


def _timestamp(value: Any) -> int:
    return int(parse_date(value).timestamp() * 1000)


# === Arrays ===

def _first(value: Any):
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _last(value: Any):
    if isinstance(value, (list, tuple)):
        return value[-1] if value else None
    return value


def _length(value: Any) -> int:
    return len(value) if isinstance(value, (list, tuple)) else 0


def _unique(value: Any) -> list:
    if not isinstance(value, (list, tuple)):
        return [value]
    seen = []
    for item in value:
        if item not in seen:
            seen.append(item)
    return seen


# === Type conversion ===

def _to_number(value: Any):
    return _maybe_int(_number(value))


def _to_array(value: Any) -> list:
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    return [value]


def _default(value: Any, fallback: Any = None):
    return value if value is not None else fallback


TRANSFORMS: dict[str, Callable[..., Any]] = {
    "uppercase": lambda v: str(v).upper(),
    "lowercase": lambda v: str(v).lower(),
    "title": _title,
    "camel": _camel,
    "pascal": _pascal,
    "snake": _snake,
    "kebab": _kebab,
    "capital": _capital,
    "trim": lambda v: str(v).strip(),
    "truncate": _truncate,
    "substring": _substring,
    "replace": _replace,
    "split": _split,
    "join": _join,
    "padStart": _pad_start,
    "padEnd": _pad_end,
    "round": _round,
    "floor": lambda v: math.floor(_number(v)),
    "ceil": lambda v: math.ceil(_number(v)),
    "abs": lambda v: _maybe_int(abs(_number(v))),
    "toFixed": _to_fixed,
    "formatDate": _format_date,
    "isoDate": _iso_date,
    "timestamp": _timestamp,
    "first": _first,
    "last": _last,
    "length": _length,
    "unique": _unique,
    "toString": to_display_string,
    "toNumber": _to_number,
    "toBoolean": bool,
    "toArray": _to_array,
    "default": _default,
}


def apply_transform(name: str, value: Any, *args: Any) -> Any:
    """Apply a named transform. Raises ValueError for unknown names."""
    transform = TRANSFORMS.get(name)
    if transform is None:
        raise ValueError(f"Unknown transform: {name}")
    return transform(value, *args)


def render_template(template: str, data: Any) -> str:
    """Substitute {{dotted.path}} placeholders. Missing paths render empty."""

    def _lookup(match: re.Match) -> str:
        current = data
        for key in match.group(1).strip().split("."):
            if isinstance(current, dict) and current.get(key) is not None:
                current = current[key]
            elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
                current = current[int(key)]
            else:
                return ""
        return to_display_string(current)

    return _TEMPLATE_PATTERN.sub(_lookup, template)


def generate_slug(template: str, data: Any) -> str:
    """Render, kebab-case, keep [a-z0-9-], cap at 100 chars, fall back to 'item'."""
    slug = _kebab(render_template(template, data))
    slug = _SLUG_STRIP.sub("", slug)
    slug = slug[:SLUG_MAX_LENGTH]
    return slug or SLUG_FALLBACK
