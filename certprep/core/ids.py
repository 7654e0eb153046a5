"""Public identifier formats: ``{prefix}_{base36 epoch ms}_{random}``."""

from __future__ import annotations

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_lowercase


def to_base36(value: int) -> str:
    """Encode a non-negative integer in lowercase base 36."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def _timestamp() -> str:
    return to_base36(int(time.time() * 1000))


def new_question_id() -> str:
    return f"q_{_timestamp()}_{secrets.token_hex(4)}"


def new_quiz_id() -> str:
    return f"quiz_{_timestamp()}_{secrets.token_hex(4)}"


def new_session_id() -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"session_{_timestamp()}_{suffix}"
