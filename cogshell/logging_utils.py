from __future__ import annotations

import datetime as dt
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import cast


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        extra = record.__dict__.get("extra")
        if isinstance(extra, dict):
            payload.update(cast(dict[str, object], extra))
        return json.dumps(payload, ensure_ascii=False, default=str)


class _ConsoleFormatter(logging.Formatter):
    """Plain formatter that appends structured `extra` fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extra = record.__dict__.get("extra")
        if isinstance(extra, dict) and extra:
            kv = " ".join(f"{k}={v}" for k, v in extra.items())
            return f"{base} [{kv}]"
        return base


def setup_logging(
    level: str = "WARNING",
    json_logs: bool = False,
    *,
    log_file: str = "cogshell.log",
    log_file_level: str = "DEBUG",
    log_file_max_bytes: int = 5_000_000,
    log_file_backup_count: int = 3,
) -> None:
    root = logging.getLogger()
    # Root takes everything; handlers decide what they keep.
    root.setLevel(logging.DEBUG)

    # Console goes to stderr so it never interleaves with the chat transcript on stdout.
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(getattr(logging, level.upper(), logging.WARNING))
    fmt: logging.Formatter
    if json_logs:
        fmt = JsonFormatter()
    else:
        fmt = _ConsoleFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)

    handlers: list[logging.Handler] = [handler]

    if log_file:
        try:
            p = Path(str(log_file)).expanduser()
            if str(p.parent) not in ("", "."):
                p.parent.mkdir(parents=True, exist_ok=True)
            fh = RotatingFileHandler(
                p,
                maxBytes=int(log_file_max_bytes),
                backupCount=int(log_file_backup_count),
                encoding="utf-8",
            )
            fh.setLevel(getattr(logging, str(log_file_level).upper(), logging.DEBUG))
            # The file always gets JSON lines; it is meant for grepping, not reading.
            fh.setFormatter(JsonFormatter())
            handlers.append(fh)
        except OSError as e:
            sys.stderr.write(f"cogshell: WARNING: failed to open log file {log_file!r}: {e}\n")

    root.handlers[:] = handlers


log = logging.getLogger("cogshell")
