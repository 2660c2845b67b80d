from __future__ import annotations

import logging
from pathlib import Path

from genstudio.core.config import settings

# Log rotation settings (file target only)
MAX_LOG_LINES = 10000
TRUNCATE_THRESHOLD = 15000  # Truncate when exceeding this many lines


def truncate_log_file(log_path: Path) -> None:
    """Truncate log file to last MAX_LOG_LINES if it exceeds TRUNCATE_THRESHOLD.

    This prevents unbounded log file growth. Called on startup.
    """
    if not log_path.exists():
        return

    try:
        with open(log_path, "r", encoding="utf-8") as f:
            lines = f.readlines()

        if len(lines) > TRUNCATE_THRESHOLD:
            # Keep only the last MAX_LOG_LINES
            truncated_lines = lines[-MAX_LOG_LINES:]

            # Write back atomically
            temp_path = log_path.with_suffix(log_path.suffix + ".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                f.writelines(truncated_lines)

            # Replace original file
            temp_path.replace(log_path)

            print(f"LOG_ROTATION: Truncated {len(lines)} lines to {len(truncated_lines)} lines")
    except OSError as e:
        print(f"LOG_ROTATION_ERROR: Failed to truncate log file: {e}")


def _configure() -> None:
    kwargs: dict = {
        "level": getattr(logging, settings.log_level.upper(), logging.INFO),
        "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        "datefmt": "%Y-%m-%dT%H:%M:%S",
    }
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        truncate_log_file(log_path)
        kwargs["filename"] = str(log_path)
    logging.basicConfig(**kwargs)


# Configure structured logging
_configure()

log = logging.getLogger("genstudio")
