from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

LOG_FILE_NAME = "provisioner.log"
FALLBACK_DIR_NAME = "DesktopProvisioner"

_FORMATTER = logging.Formatter(
    fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)

# One run log and one console stream per process, owned by this module.
_file_handler: Optional[logging.FileHandler] = None
_console_handler: Optional[logging.Handler] = None


def _open_run_log(logs_dir: str) -> logging.FileHandler:
    """Open ``provisioner.log`` in ``logs_dir``, else under %TEMP%.

    ProgramData is not always writable for the account a build agent runs
    under; the per-user temp directory is.
    """

    try:
        Path(logs_dir).mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(Path(logs_dir) / LOG_FILE_NAME, encoding="utf-8")
    except OSError:
        fallback = Path(tempfile.gettempdir()) / FALLBACK_DIR_NAME
        fallback.mkdir(parents=True, exist_ok=True)
        return logging.FileHandler(fallback / LOG_FILE_NAME, encoding="utf-8")


def configure_logging(logs_dir: str, level: int = logging.INFO, also_console: bool = True) -> str:
    """Send root logging to ``<logs_dir>/provisioner.log`` (plus the console).

    Calling again with the same directory is a no-op; a different directory
    moves the run log there. Returns the path actually written to.
    """

    global _file_handler, _console_handler

    root = logging.getLogger()
    root.setLevel(level)

    requested = os.path.abspath(os.path.join(logs_dir, LOG_FILE_NAME))
    if _file_handler is not None and _file_handler.baseFilename == requested:
        return _file_handler.baseFilename

    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
    _file_handler = _open_run_log(logs_dir)
    _file_handler.setFormatter(_FORMATTER)
    root.addHandler(_file_handler)

    if also_console and _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(_FORMATTER)
        root.addHandler(_console_handler)

    # urllib3 reports every pooled connection at DEBUG/INFO.
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    chosen = _file_handler.baseFilename
    log = logging.getLogger(__name__)
    if chosen != requested:
        log.warning("Log directory %s is not writable; logging to %s", logs_dir, chosen)
    else:
        log.info("Logging to %s", chosen)
    return chosen


def shutdown_logging() -> None:
    """Flush, detach and close the handlers configure_logging() installed."""

    global _file_handler, _console_handler

    root = logging.getLogger()
    for h in (_file_handler, _console_handler):
        if h is not None:
            root.removeHandler(h)
            h.close()
    _file_handler = None
    _console_handler = None
