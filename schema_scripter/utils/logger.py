# Structured logging
import logging
import os
import time
from datetime import datetime

# --- Setup Log Directory ---
from pathlib import Path

# Compute project root locally to avoid import cycles with `schema_scripter.config`
PROJECT_ROOT = Path(__file__).resolve().parents[2]
LOG_DIR = os.getenv("SCHEMA_SCRIPTER_LOG_DIR") or os.path.join(str(PROJECT_ROOT), "Log")

LOG_FORMAT = "%(asctime)s - %(module)s:%(lineno)d - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_daily_log_path() -> str:
    """Generate a log file path with the current date"""
    today = datetime.now().strftime("%Y-%m-%d")
    return os.path.join(LOG_DIR, f"app_{today}.log")


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        env_level = os.getenv("ENV_LOG_LEVEL")
        level = env_level if env_level else logging.DEBUG
    if isinstance(level, str):
        # getLevelName maps 'INFO' -> 20 and returns a string for unknown names
        resolved = logging.getLevelName(level.upper())
        return resolved if isinstance(resolved, int) else logging.DEBUG
    return int(level)


def setup_logging(name: str = __name__, level: int | str | None = None) -> logging.Logger:
    """Setup structured logging with daily rotation and noise suppression.

    Args:
        name: The module name to attach to the logger.
        level: Optional logging level (int or string like 'INFO').
            If None, uses the ENV_LOG_LEVEL environment variable or defaults to DEBUG.
    """
    resolved_level = _resolve_level(level)

    # Create a project-specific logger
    logger = logging.getLogger(name)
    logger.setLevel(resolved_level)
    logger.propagate = False  # prevent bubbling to root logger

    # Clear old handlers
    if logger.handlers:
        for h in logger.handlers[:]:
            logger.removeHandler(h)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(resolved_level)
    logger.addHandler(console_handler)

    # File handler
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        file_handler = logging.FileHandler(get_daily_log_path(), mode="a", encoding="utf-8")
    except OSError as exc:
        logger.warning("File logging disabled, cannot open %s: %s", LOG_DIR, exc)
    else:
        file_handler.setFormatter(formatter)
        file_handler.setLevel(resolved_level)
        logger.addHandler(file_handler)

    # Suppress noisy third-party logs globally
    noisy_libs = [
        "asyncio", "urllib3", "sqlalchemy.engine", "sqlalchemy.pool", "pyodbc",
    ]
    for lib in noisy_libs:
        logging.getLogger(lib).setLevel(logging.WARNING)

    return logger


def set_level(level: int | str) -> None:
    """Re-apply a level to every project logger created so far (CLI --log-level)."""
    resolved = _resolve_level(level)
    for logger_name, candidate in logging.Logger.manager.loggerDict.items():
        if not isinstance(candidate, logging.Logger):
            continue
        if not (logger_name.startswith("schema_scripter") or logger_name.startswith("scripter_db")
                or logger_name == "__main__"):
            continue
        candidate.setLevel(resolved)
        for handler in candidate.handlers:
            handler.setLevel(resolved)


def cleanup_old_logs(days_to_keep: int = 30) -> int:
    """Delete log files older than specified days."""
    if not os.path.isdir(LOG_DIR):
        return 0
    removed = 0
    now = time.time()
    for filename in os.listdir(LOG_DIR):
        if filename.startswith("app_") and filename.endswith(".log"):
            file_path = os.path.join(LOG_DIR, filename)
            try:
                if os.path.getmtime(file_path) < now - (days_to_keep * 86400):
                    os.remove(file_path)
                    removed += 1
                    logging.info(f"Deleted old log file: {filename}")
            except OSError as exc:
                logging.warning("Could not delete old log file %s: %s", filename, exc)
    return removed


# --- Example Usage ---
if __name__ == "__main__":
    logger = setup_logging(__name__, level="DEBUG")
    logger.debug("Debug log test - only visible if ENV_LOG_LEVEL=DEBUG.")
    logger.info("Logger ready.")
    cleanup_old_logs(30)
