"""Content id helpers.

Remote content ids are 16-character hexadecimal strings (``00000000005E5403``)
while the web UI uses the decimal form (``6181891``) in URLs.
"""

from __future__ import annotations

import re

ROOT_ID = "0000000000000000"
FOLDER = "Folder"
ID_WIDTH = 16

# Well-known top-level virtual folders, keyed by the alias used as their id,
# in display order.
SPECIAL_ROOTS: dict[str, str] = {
    "personal": "Personal",
    "global": "Global",
    "global_admin": "Global (isAdminMode)",
    "adminRecommended": "Admin Recommended",
    "installedApps": "Installed Apps",
}

_HEX_RE = re.compile(r"^(0x)?[0-9A-Fa-f]+$")
_DEC_RE = re.compile(r"^[0-9]+$")


def is_special_root(node_id: str) -> bool:
    return node_id in SPECIAL_ROOTS


def is_valid_id(node_id: str) -> bool:
    """Return ``True`` for a 16-char hex id or a special root alias."""
    if is_special_root(node_id):
        return True
    return len(node_id) == ID_WIDTH and bool(_HEX_RE.match(node_id))


def hex_to_decimal(hex_id: str) -> str:
    """Convert a hexadecimal content id to its decimal form.

    Raises:
        ValueError: If *hex_id* is empty or not hexadecimal.
    """
    clean = (hex_id or "").strip()
    if not clean or not _HEX_RE.match(clean):
        raise ValueError(f"Invalid hex ID format: {hex_id!r}")
    return str(int(clean, 16))


def decimal_to_hex(decimal_id: str) -> str:
    """Convert a decimal content id to 16-char, zero-padded upper-case hex.

    Raises:
        ValueError: If *decimal_id* is empty or not a decimal number.
    """
    clean = (decimal_id or "").strip()
    if not clean or not _DEC_RE.match(clean):
        raise ValueError(f"Invalid decimal ID format: {decimal_id!r}")
    return format(int(clean), "X").rjust(ID_WIDTH, "0")


def format_content_id(hex_id: str) -> str:
    """Return ``"HEX (DECIMAL)"``, or the id unchanged if it is not hex."""
    try:
        return f"{hex_id} ({hex_to_decimal(hex_id)})"
    except ValueError:
        return hex_id
