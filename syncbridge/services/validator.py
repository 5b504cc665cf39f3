"""
Webflow field-type coercion and validation.
Runs after mapping, before anything is sent upstream.
"""
import logging
import math
import re
from datetime import date, datetime
from typing import Any, Optional
from urllib.parse import urlparse

import phonenumbers

from syncbridge.services.transforms import parse_date
from syncbridge.utils.errors import ValidationError

logger = logging.getLogger(__name__)

_STRICT_EMAIL = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
_LOOSE_EMAIL = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_SLUG = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_EVENT_HANDLER_DQ = re.compile(r"on\w+=\"[^\"]*\"", re.IGNORECASE)
_EVENT_HANDLER_SQ = re.compile(r"on\w+='[^']*'", re.IGNORECASE)
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)

TEXT_TYPES = {"PlainText", "RichText"}
FILE_TYPES = {"Image", "File", "Video", "FileRef"}
MULTI_TYPES = {"MultiOption", "MultiReference", "MultiImage"}

# SmartSuite field type -> Webflow field types it can feed; first entry is the default
FIELD_TYPE_COMPATIBILITY: dict[str, tuple[str, ...]] = {
    "textfield": ("PlainText", "Link", "Email", "Phone"),
    "textarea": ("RichText", "PlainText"),
    "numberfield": ("Number",),
    "currencyfield": ("Number",),
    "percentfield": ("Number",),
    "duedatefield": ("DateTime",),
    "datefield": ("DateTime",),
    "singleselectfield": ("Option", "PlainText"),
    "multipleselectfield": ("MultiOption", "PlainText"),
    "singlecheckbox": ("Switch",),
    "linkedrecord": ("Reference", "MultiReference"),
    "files": ("File", "Image", "MultiImage", "Video", "FileRef"),
    "emailfield": ("Email", "PlainText"),
    "phonefield": ("Phone", "PlainText"),
    "urlfield": ("Link", "PlainText"),
    "addressfield": ("PlainText", "RichText"),
    "autoautonumber": ("Number", "PlainText"),
    "formulafield": ("Number", "PlainText"),
    "lookupfield": ("PlainText", "Number"),
}

WEBFLOW_FIELD_TYPES = frozenset(
    t for types in FIELD_TYPE_COMPATIBILITY.values() for t in types
)


def _flatten(values: list) -> list:
    flat = []
    for item in values:
        if isinstance(item, (list, tuple)):
            flat.extend(_flatten(list(item)))
        else:
            flat.append(item)
    return flat


def _require(value: Any, label: str) -> None:
    if value is None:
        raise ValueError(f"{label} field cannot be null")


def validate_field_type(value: Any, field_type: str) -> Any:
    """
    Coerce `value` for a Webflow field type. Raises ValueError when the value
    cannot be represented. Unknown types pass through unchanged.
    """
    if field_type in TEXT_TYPES:
        _require(value, "Text")
        text = value if isinstance(value, str) else str(value)
        return sanitize_html(text) if field_type == "RichText" else text

    if field_type == "Email":
        _require(value, "Email")
        email = str(value)
        if not _STRICT_EMAIL.match(email):
            raise ValueError(f"Invalid email address: {email}")
        return email

    if field_type == "Phone":
        if value is None:
            return None
        return value if isinstance(value, str) else str(value)

    if field_type == "Link":
        _require(value, "URL")
        url = str(value)
        if not validate_url(url, http_only=True):
            raise ValueError(f"Invalid URL: {url}. Expected a valid http:// or https:// URL.")
        return url

    if field_type == "Number":
        if value is None or value == "":
            raise ValueError(f"Invalid number value: {value!r}. Expected a numeric value.")
        if isinstance(value, bool):
            raise ValueError("Expected number, got bool")
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                raise ValueError(f"Invalid number value: {value!r}. Expected a numeric value.")
            if not math.isfinite(number):
                raise ValueError(f"Invalid number value: {value!r}. Expected a numeric value.")
            return int(number) if number.is_integer() and "." not in value else number
        raise ValueError(f"Expected number, got {type(value).__name__}")

    if field_type == "Switch":
        if isinstance(value, bool):
            return value
        if value == "true" or value == 1:
            return True
        if value == "false" or value == 0:
            return False
        if value is None:
            return None
        raise ValueError(f"Expected boolean, got {type(value).__name__}")

    if field_type == "DateTime":
        if value is None:
            return None
        if isinstance(value, (datetime, date)):
            return parse_date(value).isoformat()
        if isinstance(value, str):
            try:
                parse_date(value)
            except (ValueError, OverflowError):
                raise ValueError(f"Expected valid date string, got {value!r}")
            return value
        raise ValueError(f"Expected valid date string, got {type(value).__name__}")

    if field_type in ("Option", "Reference"):
        if value is None or isinstance(value, str):
            return value
        raise ValueError(f"Expected string for {field_type} field, got {type(value).__name__}")

    if field_type in MULTI_TYPES:
        if value is None:
            return None
        if isinstance(value, str):
            return [value]
        if isinstance(value, (list, tuple)):
            return _flatten(list(value))
        raise ValueError(f"Expected array for {field_type} field, got {type(value).__name__}")

    if field_type in FILE_TYPES:
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, dict) and value.get("url"):
            return value["url"]
        raise ValueError(f"Expected string or file object, got {type(value).__name__}")

    return value


def validate_required_fields(field_data: dict, required_fields: Optional[list]) -> None:
    """Raise ValidationError if a required field is missing or null. [] counts as present."""
    missing = [f for f in (required_fields or []) if field_data.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def coerce_field_data(field_data: dict, field_types: Optional[dict]) -> dict:
    """
    Coerce every typed field that has a value. Collects all failures into one
    ValidationError.
    """
    if not field_types:
        return dict(field_data)

    coerced = dict(field_data)
    errors = []
    for field_name, field_type in field_types.items():
        if field_name not in coerced:
            continue
        try:
            coerced[field_name] = validate_field_type(coerced[field_name], field_type)
        except ValueError as e:
            errors.append(f"Field '{field_name}': {e}")

    if errors:
        raise ValidationError("; ".join(errors))
    return coerced


def compatible_types(source_type: str) -> tuple[str, ...]:
    return FIELD_TYPE_COMPATIBILITY.get((source_type or "").lower(), ())


def is_compatible(source_type: str, target_type: str) -> bool:
    return target_type in compatible_types(source_type)


def recommended_type(source_type: str) -> Optional[str]:
    types = compatible_types(source_type)
    return types[0] if types else None


def validate_field_types(field_types: Optional[dict], source_types: Optional[dict] = None) -> None:
    """
    Check a mapping's {field: Webflow type} declarations, and when
    {field: SmartSuite type} is given, that each source can feed its target.
    Raises ValidationError listing every problem.
    """
    errors = []
    for field_name, field_type in (field_types or {}).items():
        if field_type not in WEBFLOW_FIELD_TYPES:
            errors.append(f"Field '{field_name}': unknown Webflow field type {field_type!r}")
            continue
        source_type = (source_types or {}).get(field_name)
        if source_type is not None and not is_compatible(source_type, field_type):
            allowed = ", ".join(compatible_types(source_type)) or "none"
            errors.append(
                f"Field '{field_name}': SmartSuite type {source_type!r} cannot feed "
                f"{field_type} (compatible: {allowed})"
            )
    if errors:
        raise ValidationError("; ".join(errors))


def validate_slug(slug: str) -> bool:
    """Webflow slug: lowercase alphanumeric words joined by single hyphens, max 100 chars."""
    if not slug or len(slug) > 100:
        return False
    return bool(_SLUG.match(slug))


def validate_url(url: str, http_only: bool = False) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if not parsed.scheme:
        return False
    if http_only:
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
    return bool(parsed.netloc or parsed.path)


def validate_email(email: str) -> bool:
    return bool(_LOOSE_EMAIL.match(email))


def validate_phone(phone: str, default_region: str = "US") -> bool:
    """Plausible phone number: parses and has a possible length for its region."""
    if not phone or not phone.strip():
        return False
    try:
        parsed = phonenumbers.parse(phone.strip(), default_region)
    except phonenumbers.NumberParseException:
        return False
    return phonenumbers.is_possible_number(parsed)


def sanitize_html(html: str) -> str:
    """Strip script tags, inline event handlers and javascript: URLs."""
    sanitized = _SCRIPT_TAG.sub("", html)
    sanitized = _EVENT_HANDLER_DQ.sub("", sanitized)
    sanitized = _EVENT_HANDLER_SQ.sub("", sanitized)
    return _JS_PROTOCOL.sub("", sanitized)


def validate_field_data(field_data: dict, schema: Optional[dict] = None) -> tuple[bool, list[str]]:
    """
    Check field data against {field: {"type": ..., "required": bool}}.
    Returns (valid, errors) without raising.
    """
    if not schema:
        return True, []

    errors: list[str] = []
    for field_name, field_schema in schema.items():
        value = field_data.get(field_name)
        field_type = field_schema.get("type")

        if field_schema.get("required") and value is None:
            errors.append(f"Field '{field_name}' is required")
            continue
        if value is None:
            continue

        try:
            validate_field_type(value, field_type)
        except ValueError as e:
            errors.append(f"Field '{field_name}': {e}")

        if field_type == "Email" and not validate_email(str(value)):
            errors.append(f"Field '{field_name}': Invalid email format")
        if field_type == "Link" and not validate_url(str(value)):
            errors.append(f"Field '{field_name}': Invalid URL format")
        if field_type == "Phone" and not validate_phone(str(value)):
            errors.append(f"Field '{field_name}': Invalid phone format")

    return len(errors) == 0, errors
