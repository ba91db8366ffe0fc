"""Input coercion shared by the battle and betting services."""

from __future__ import annotations

from typing import Any

from web3 import Web3

from arena.errors import ValidationError


def require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", field=field)
    return value.strip()


def require_address(value: Any, field: str) -> str:
    """Validate an EVM address and return it lower-cased."""

    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValidationError(f"{field} must be a valid address", field=field)
    return value.lower()


def require_warrior_id(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer", field=field)
    try:
        warrior_id = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive integer", field=field) from None
    if warrior_id <= 0 or str(warrior_id) != str(value).strip():
        raise ValidationError(f"{field} must be a positive integer", field=field)
    return warrior_id


def require_amount(value: Any, field: str) -> int:
    """Integer base units; accepts ints and decimal digit strings (wei amounts overflow JSON numbers)."""

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer amount", field=field)
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValidationError(f"{field} must be a positive integer amount", field=field)
    if amount <= 0:
        raise ValidationError(f"{field} must be a positive integer amount", field=field)
    return amount


def require_mirror_key(value: Any, field: str) -> str:
    """A 0x-prefixed bytes32 hex string, as the mirror contract keys its markets."""

    if not isinstance(value, str) or len(value) != 66 or not value.startswith("0x"):
        raise ValidationError(f"{field} must be a 0x-prefixed bytes32 hex string", field=field)
    try:
        decoded = Web3.to_bytes(hexstr=value)
    except ValueError:
        raise ValidationError(f"{field} must be a 0x-prefixed bytes32 hex string", field=field) from None
    if len(decoded) != 32:
        raise ValidationError(f"{field} must be a 0x-prefixed bytes32 hex string", field=field)
    return value
