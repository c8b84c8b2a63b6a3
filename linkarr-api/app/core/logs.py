# app/core/logs.py
# Run-log setup for link passes. The run log is append-only: one line per
# terminal outcome per file, plus fatal errors and a summary.
from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from pathlib import Path

LOGGER = logging.getLogger("linkarr")


class EnsureContext(logging.Filter):
    """Give every record the fields the formatters reference."""
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "run_id"):     record.run_id = "-"
        if not hasattr(record, "file_token"): record.file_token = "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
            "run_id": getattr(record, "run_id", None),
            "file_token": getattr(record, "file_token", None),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class RunLogger(logging.LoggerAdapter):
    """Attach run_id to every record; per-call extra (file_token) is merged, not dropped."""
    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def run_logger(run_id: str) -> RunLogger:
    return RunLogger(LOGGER, {"run_id": run_id})


def setup_logging(log_path: Path, verbose: int = 0, quiet: bool = False,
                  json_logs: bool = False) -> logging.Logger:
    """
    Console/File matrix:
      - -q:   console = silent;  file = INFO+
      - none: console = INFO+;   file = INFO+
      - -v:   console = DEBUG;   file = DEBUG
    """
    logger = LOGGER
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    if quiet:
        console_level = logging.CRITICAL + 1
    elif verbose >= 1:
        console_level = logging.DEBUG
    else:
        console_level = logging.INFO
    file_level = logging.DEBUG if verbose >= 1 else logging.INFO

    ch = logging.StreamHandler()
    ch.setLevel(console_level)
    ch.addFilter(EnsureContext())
    ch.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(ch)

    log_path = Path(log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    fh = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    fh.setLevel(file_level)
    fh.addFilter(EnsureContext())
    if json_logs:
        fh.setFormatter(JsonFormatter())
    else:
        fmt = logging.Formatter(
            "%(asctime)sZ [%(levelname)s] [%(run_id)s:%(file_token)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S"
        )
        fmt.converter = time.gmtime
        fh.setFormatter(fmt)
    logger.addHandler(fh)

    logger.debug(f"Log file: {log_path}")
    return logger
