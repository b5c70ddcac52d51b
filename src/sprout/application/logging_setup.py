"""Per-run file logging in addition to the console handler the CLI installs."""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

from ulid import ULID

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO}


def level_for(verbose: int) -> int:
    return VERBOSITY_LEVELS.get(verbose, logging.DEBUG)


def setup_logging(log_dir: Path, verbose: int = 1) -> tuple[logging.Logger, Path, str]:
    """
    Attach a rotating file handler for this run to the ``sprout`` logger.

    Returns:
        (logger, log file path, run id)
    """
    run_id = str(ULID())
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / f"sprout_{datetime.now().strftime('%Y%m%d')}.log"

    logger = logging.getLogger("sprout")
    logger.setLevel(level_for(verbose))
    for handler in list(logger.handlers):
        if getattr(handler, "_sprout_run", False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=2 * 1024 * 1024, backupCount=5, encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler._sprout_run = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    logger.info(f"Run {run_id} started (verbosity {verbose})")
    return logger, log_path, run_id
