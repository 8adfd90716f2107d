from __future__ import annotations

import re
import uuid
from contextvars import ContextVar
from typing import Optional

_request_id: ContextVar[str] = ContextVar("_request_id", default="-")

_SAFE_ID = re.compile(r"^[A-Za-z0-9_\-]{6,64}$")

def new_request_id(incoming: Optional[str] = None) -> str:
    """Adopt a well-formed caller id (X-Request-Id) or mint a fresh one."""
    rid = incoming if incoming and _SAFE_ID.match(incoming) else uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid

def get_request_id() -> str:
    return _request_id.get()
