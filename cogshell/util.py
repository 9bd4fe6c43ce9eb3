from __future__ import annotations

import json
import re
import time
import uuid
from typing import Any, List, Optional


def utc_ts() -> float:
    return time.time()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def jdump(x: Any) -> str:
    return json.dumps(x, ensure_ascii=False, sort_keys=True, default=str)


def jload(s: Optional[str]) -> Any:
    if not s:
        return None
    return json.loads(s)


def short(s: str, n: int = 200) -> str:
    """Single-line, ellipsized view of `s` for logs and listings."""
    s = (s or "").strip().replace("\n", " ")
    return s if len(s) <= n else (s[: n - 1] + "…")


def preview(s: str, n: int = 300) -> str:
    """Prefix of `s` with a literal "..." marker when cut; keeps newlines."""
    s = s or ""
    return s if len(s) <= n else s[:n] + "..."


def toks(s: str) -> List[str]:
    return re.findall(r"[a-z0-9_]+", (s or "").lower())


def words(s: str) -> List[str]:
    return (s or "").split()


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def innermost(e: BaseException) -> BaseException:
    """Walk `__cause__`/`__context__` to the root error."""
    seen = set()
    cur = e
    while id(cur) not in seen:
        seen.add(id(cur))
        nxt = cur.__cause__ or cur.__context__
        if nxt is None:
            break
        cur = nxt
    return cur
