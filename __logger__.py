import os
import logging
import logging.handlers

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logger(level=20, stream_logs=True, log_dir=None, console=None):
    """
    Configure the root logger for MCpal.

    Everything goes to logs/mcpal.log (rotated), and when stream_logs is set
    the same records are shown on the terminal through rich.

    Args:
        level: numeric logging level (10 debug, 20 info, ...)
        stream_logs: also print log records to the terminal
        log_dir: directory for the log file, defaults to ./logs
        console: rich Console used for terminal output
    """
    log_dir = log_dir or os.path.join(os.getcwd(), "logs")
    os.makedirs(log_dir, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # setup_logger can run more than once (tests, restarts), start clean
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(log_dir, "mcpal.log"),
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(file_handler)

    if stream_logs:
        stream_handler = RichHandler(
            console=console or Console(),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
        stream_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(stream_handler)

    return root
