from __future__ import annotations

import random


AUTO_ID_CHARS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
AUTO_ID_LENGTH = 20
REQUEST_TAG_LENGTH = 5

_RANDOM = random.SystemRandom()


def auto_id() -> str:
    """Return a random 20-character identifier."""
    return "".join(_RANDOM.choice(AUTO_ID_CHARS) for _ in range(AUTO_ID_LENGTH))


def request_tag() -> str:
    """Return a short identifier used to correlate log lines of one request."""
    return auto_id()[:REQUEST_TAG_LENGTH]
