"""Client-side identifiers.

Ids are generated where the record is created, without a central counter:
epoch milliseconds plus nine random base-36 characters.
"""

from __future__ import annotations

import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase

ORDER_PREFIX = "PED-"
ITEM_PREFIX = "PROD-"
HISTORY_PREFIX = "HIST-"
NOTIFICATION_PREFIX = "NOTIF-"


def generate_id(prefix: str = "") -> str:
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(9))
    return f"{prefix}{millis}-{suffix}"
