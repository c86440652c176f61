from __future__ import annotations

import time
import uuid


def generate_id(prefix: str) -> str:
    """Opaque unique id like `pin_1718000000000_3f2a9c1b7`."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
