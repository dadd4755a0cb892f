"""Per-run log files for long syncs, next to the regular application log."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator

from olxsync.settings import settings

_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"


@contextmanager
def sync_run_log(kind: str, shop_id, log_dir: str | None = None) -> Iterator[logging.Logger]:
    """
    Yield a logger that writes to ``<log_dir>/<kind>_<shop>_<timestamp>.log``
    and propagates to the module loggers. The handler is always detached.
    """
    directory = Path(log_dir or settings.sync_log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = directory / f"{kind}_{shop_id}_{timestamp}.log"

    logger = logging.getLogger(f"olxsync.runs.{kind}.{shop_id}")
    logger.setLevel(logging.INFO)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_FORMAT))
    logger.addHandler(handler)
    try:
        logger.info(f"Log file: {path}")
        yield logger
    finally:
        logger.removeHandler(handler)
        handler.close()
