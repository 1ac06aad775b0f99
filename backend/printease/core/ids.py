"""Identifier generation for orders, notifications, audit entries and messages."""

import secrets
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

_ALPHABET = string.ascii_lowercase + string.digits


def epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def random_suffix(length: int = 9) -> str:
    """Return ``length`` random lowercase alphanumeric characters."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def timestamped_id(prefix: str) -> str:
    """Build ids of the form ``<prefix>_<epoch ms>_<9 chars>``."""
    return f"{prefix}_{epoch_millis()}_{random_suffix()}"


def generate_order_id(now: Optional[datetime] = None) -> str:
    """
    Generate a unique order id.

    Returns:
        Order id such as ``PE-20240115103000-3FA2C1``
    """
    timestamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%d%H%M%S")
    return f"PE-{timestamp}-{uuid.uuid4().hex[:6].upper()}"


def generate_batch_id() -> str:
    return f"BATCH-{epoch_millis()}-{random_suffix(4)}"
