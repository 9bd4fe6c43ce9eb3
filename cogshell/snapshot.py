from __future__ import annotations

import datetime as dt
import json
from pathlib import Path
from typing import Any, Dict, Union

from .logging_utils import log

DEFAULT_SNAPSHOT_DIR = "~/.cogshell"


def snapshot_filename(persona_id: str, when: dt.datetime) -> str:
    return f"persona_snapshot_{persona_id}_{when.strftime('%Y%m%d_%H%M%S')}.json"


def write_snapshot(data: Dict[str, Any], directory: Union[str, Path] = DEFAULT_SNAPSHOT_DIR) -> Path:
    """Write a persona snapshot as indented JSON and return its path."""
    d = Path(directory).expanduser()
    d.mkdir(parents=True, exist_ok=True)
    path = d / snapshot_filename(str(data.get("persona_id") or "unknown"), dt.datetime.now(dt.timezone.utc))
    path.write_text(json.dumps(data, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
    log.info("snapshot written", extra={"extra": {"path": str(path)}})
    return path
