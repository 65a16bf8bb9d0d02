from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

from ..errors import ConfigurationError, InstallerError, LaunchError, MissingArtifactError
from .command import CmdResult, Runner, fmt_argv, run_cmd

logger = logging.getLogger(__name__)

MSIEXEC = "msiexec.exe"
REBOOT_REQUIRED = 3010


class ExitPolicy(str, Enum):
    STRICT = "strict"
    TOLERANT = "tolerant"

    @classmethod
    def parse(cls, value: object) -> "ExitPolicy":
        try:
            return cls(str(getattr(value, "value", value)).strip().lower())
        except ValueError as e:
            raise ConfigurationError(f"Unknown exit policy {value!r} (expected strict|tolerant)") from e


class ExitStatus(str, Enum):
    SUCCESS = "success"
    REBOOT_REQUIRED = "reboot_required"
    FAILED = "failed"

    @property
    def ok(self) -> bool:
        return self is not ExitStatus.FAILED


def classify_exit_code(code: int) -> ExitStatus:
    if code == 0:
        return ExitStatus.SUCCESS
    if code == REBOOT_REQUIRED:
        return ExitStatus.REBOOT_REQUIRED
    return ExitStatus.FAILED


@dataclass(frozen=True)
class InstallTask:
    """One installer invocation."""

    label: str
    executable: str
    arguments: List[str] = field(default_factory=list)
    log_file: Optional[str] = None
    exit_policy: ExitPolicy = ExitPolicy.STRICT
    # msiexec writes its own verbose log; other installers get an argv line.
    native_log: bool = False
    requires_elevation: bool = False
    # .msi/.msp handed to msiexec; None when the executable is the package.
    package: Optional[str] = None
    # Files that must sit next to the package (CABs, runtimes).
    companion_files: Sequence[str] = ()

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.arguments]


@dataclass(frozen=True)
class InstallOutcome:
    label: str
    exit_code: int
    status: ExitStatus
    tolerated: bool = False

    @property
    def reboot_required(self) -> bool:
        return self.status is ExitStatus.REBOOT_REQUIRED


def require_file(path: str | Path, what: str = "Required file") -> Path:
    p = Path(path)
    if not p.is_file():
        raise MissingArtifactError(f"{what} not found: {p}")
    return p


def _check_properties(properties: Mapping[str, object]) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for key, value in properties.items():
        k = str(key).strip()
        if not k or any(c.isspace() for c in k) or "=" in k:
            raise ConfigurationError(f"Invalid MSI property name: {key!r}")
        if k.upper() in seen:
            raise ConfigurationError(f"Duplicate MSI property: {k}")
        seen.add(k.upper())
        out.append(f"{k}={value}")
    return out


def msi_install_args(package: str | Path, properties: Mapping[str, object], log_file: str | Path) -> List[str]:
    """msiexec /i <pkg> K=V... REBOOT=ReallySuppress /l*v <log> /qn"""

    props = _check_properties(properties)
    if any(p.upper().startswith("REBOOT=") for p in props):
        raise ConfigurationError("REBOOT is always set to ReallySuppress")
    return [
        MSIEXEC,
        "/i",
        str(package),
        *props,
        "REBOOT=ReallySuppress",
        "/l*v",
        str(log_file),
        "/qn",
    ]


def msp_patch_args(patch: str | Path, log_file: str | Path) -> List[str]:
    return [MSIEXEC, "/update", str(patch), "REBOOT=ReallySuppress", "/l*v", str(log_file), "/qn"]


def _quote_msi_value(value: object) -> str:
    s = str(value)
    if s == "" or any(c.isspace() for c in s):
        return '"' + s.replace('"', '""') + '"'
    return s


def nested_msi_arguments(properties: Mapping[str, object], log_file: Optional[str | Path] = None) -> str:
    """Render the MSI command line an EXE wrapper forwards to msiexec."""

    parts = ["/qn"]
    for item in _check_properties(properties):
        key, _, value = item.partition("=")
        parts.append(f"{key}={_quote_msi_value(value)}")
    if log_file:
        parts += ["/l*v", _quote_msi_value(log_file)]
    return " ".join(parts)


def exe_install_args(
    executable: str | Path,
    args: Iterable[str] = (),
    *,
    extract_dir: Optional[str | Path] = None,
    msi_properties: Optional[Mapping[str, object]] = None,
    log_file: Optional[str | Path] = None,
) -> List[str]:
    """Argv for an EXE installer.

    Plain ``args`` are passed through. With ``extract_dir`` and/or
    ``msi_properties`` the self-extracting wrapper form is used:
    ``-d<dir> -s -sp<msi command line>``.
    """

    argv = [str(executable), *[str(a) for a in args]]
    if extract_dir is not None:
        argv.append(f"-d{extract_dir}")
    if msi_properties is not None:
        argv.append("-s")
        argv.append("-sp" + nested_msi_arguments(msi_properties, log_file))
    return argv


def _append_log_line(log_file: str, argv: Sequence[str]) -> None:
    p = Path(log_file)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("a", encoding="utf-8") as f:
        f.write(f"{datetime.now().isoformat(timespec='seconds')} {fmt_argv(argv)}\n")


def run_installer(
    task: InstallTask,
    *,
    runner: Runner = run_cmd,
    elevated: bool = True,
    dry_run: bool = False,
) -> InstallOutcome:
    """Launch an installer, wait for it and classify its exit code.

    Under ExitPolicy.STRICT a failing exit code raises InstallerError;
    under ExitPolicy.TOLERANT it is logged as a warning and returned.
    """

    if not dry_run:
        target = task.package or task.executable
        if target != MSIEXEC:
            pkg = require_file(target, f"{task.label} installer")
            for name in task.companion_files:
                require_file(pkg.parent / name, f"{task.label} companion file")
        if task.requires_elevation and not elevated:
            raise ConfigurationError(f"{task.label} must be run from an elevated process")

    if task.log_file and not task.native_log and not dry_run:
        _append_log_line(task.log_file, task.argv)

    logger.info("Installing %s", task.label)
    try:
        result: CmdResult = runner(task.argv, check=False, dry_run=dry_run)
    except OSError as e:
        raise LaunchError(f"Could not launch {task.label}: {e}") from e
    status = classify_exit_code(result.returncode)

    if status is ExitStatus.REBOOT_REQUIRED:
        logger.warning("%s succeeded but requires a reboot (exit code %d)", task.label, result.returncode)
        return InstallOutcome(task.label, result.returncode, status)

    if status is ExitStatus.SUCCESS:
        logger.info("%s installed", task.label)
        return InstallOutcome(task.label, result.returncode, status)

    if task.exit_policy is ExitPolicy.TOLERANT:
        logger.warning(
            "%s exited with code %d (log: %s); continuing under tolerant policy",
            task.label,
            result.returncode,
            task.log_file,
        )
        return InstallOutcome(task.label, result.returncode, status, tolerated=True)

    raise InstallerError(task.label, result.returncode, task.log_file)
