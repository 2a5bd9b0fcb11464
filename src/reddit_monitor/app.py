import logging
import logging.handlers
from pathlib import Path
from typing import Optional, Union

from .database import Database
from .errors import MigrationError

logger = logging.getLogger(__name__)


def setup_logging(log_dir: Optional[Path] = None, level: str = "INFO") -> None:
    """Configure the root logger

    - stdout, for journald
    - a file rotated at midnight, 30 days kept, when log_dir is given
    """
    log_format = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Avoid duplicate handlers when called twice
    root_logger.handlers.clear()

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(stream_handler)

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=log_dir / "app.log",
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(log_format))
        file_handler.suffix = "%Y-%m-%d"
        root_logger.addHandler(file_handler)


def open_database(db_path: Union[Path, str]) -> Database:
    """Open the store and migrate it to the latest schema

    A migration failure is fatal: the handle is closed and the error re-raised.
    """
    db = Database(db_path)
    try:
        old_version, new_version = db.migrate()
    except MigrationError as e:
        logger.error(f"Could not migrate {db_path}: {e}")
        db.close()
        raise
    if old_version != new_version:
        logger.info(f"Database {db_path} migrated v{old_version} → v{new_version}")
    return db
