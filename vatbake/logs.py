from __future__ import annotations

import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _writes_to(handler: logging.Handler, path: Path) -> bool:
    return isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == path


def setup_logger(log_path: Path, name: str = "vatbake") -> logging.Logger:
    """
    INFO-level logger `name` appending to `log_path`. Calling it again for the
    same file reuses the existing handler; a new file gets its own handler.
    """
    path = Path(log_path).resolve()
    path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    if not any(_writes_to(h, path) for h in logger.handlers):
        fh = logging.FileHandler(path, encoding="utf-8")
        fh.setLevel(logging.INFO)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(fh)
    return logger
