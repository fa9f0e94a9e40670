"""Utilities module."""
from rewards_backend.utils.datetime_helpers import ensure_utc, is_past


def mask_phone_number(phone_number: str | None) -> str:
    """Mask a payout destination for logging."""
    if not phone_number:
        return "<missing>"
    if len(phone_number) <= 4:
        return "*" * len(phone_number)
    return f"{'*' * (len(phone_number) - 4)}{phone_number[-4:]}"


__all__ = ["ensure_utc", "is_past", "mask_phone_number"]
