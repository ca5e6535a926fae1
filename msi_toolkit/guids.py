"""Product code helpers."""
from __future__ import annotations

import re
import uuid

# {XXXXXXXX-XXXX-XXXX-XXXX-XXXXXXXXXXXX}, braces optional
_GUID_PATTERN = re.compile(
    r"^\{?[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}\}?$"
)


def parse_guid(value: object) -> uuid.UUID | None:
    """Return the GUID in ``value`` or None when it is not one.

    Only the hyphenated form is accepted, with or without braces.
    """
    if isinstance(value, uuid.UUID):
        return value
    if value is None:
        return None
    text = str(value).strip()
    if not _GUID_PATTERN.match(text):
        return None
    if text.startswith("{") != text.endswith("}"):
        return None
    return uuid.UUID(text.strip("{}"))


def format_guid(value: uuid.UUID) -> str:
    return "{" + str(value).upper() + "}"
