from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from ..errors import ConfigurationError, LaunchError
from .command import Runner, fmt_argv, run_cmd
from .registry import SystemFacade

logger = logging.getLogger(__name__)


def license_pointer(host: str, port: int) -> str:
    return f"{port}@{host}"


def _audit(log_file: Path, line: str) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    with log_file.open("a", encoding="utf-8") as f:
        f.write(f"{datetime.now().isoformat(timespec='seconds')} {line}\n")


def configure_floating_license(
    system: SystemFacade,
    host: Optional[str],
    port: int,
    *,
    env_var: str,
    audit_log: str | Path,
    tool_path: Optional[str | Path] = None,
    runner: Runner = run_cmd,
    dry_run: bool = False,
) -> str:
    """Point the machine at a floating license server.

    Sets ``env_var`` to ``port@host`` machine-wide, then, when the vendor
    licensing CLI exists at ``tool_path``, runs
    ``set floating --server <host> --port <port>`` (exit code ignored).
    A tool that cannot be launched raises LaunchError. Under ``dry_run``
    audit lines are prefixed with ``DRY-RUN`` and no exit code is recorded.

    Returns the pointer that was written.
    """

    host = (host or "").strip()
    if not host:
        raise ConfigurationError("Floating licensing requested but no license server host was given")
    try:
        port = int(port)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"License server port must be an integer, got {port!r}") from e
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"License server port out of range: {port}")

    pointer = license_pointer(host, port)
    log_path = Path(audit_log)
    prefix = "DRY-RUN " if dry_run else ""

    if dry_run:
        logger.info("DRY-RUN set machine environment %s=%s", env_var, pointer)
    else:
        system.set_machine_environment(env_var, pointer)
    _audit(log_path, f"{prefix}set {env_var}={pointer}")

    if tool_path and Path(tool_path).is_file():
        argv = [str(tool_path), "set", "floating", "--server", host, "--port", str(port)]
        try:
            r = runner(argv, check=False, dry_run=dry_run)
        except OSError as e:
            _audit(log_path, f"{fmt_argv(argv)} -> launch failed: {e}")
            raise LaunchError(f"Could not launch licensing tool {tool_path}: {e}") from e
        if dry_run:
            _audit(log_path, f"{prefix}{fmt_argv(argv)}")
        else:
            _audit(log_path, f"{fmt_argv(argv)} -> exit {r.returncode}")
    else:
        logger.warning("Licensing tool not found (%s); environment pointer only", tool_path)
        _audit(log_path, f"{prefix}licensing tool not found: {tool_path}")

    logger.info("Floating license configured: %s=%s", env_var, pointer)
    return pointer
