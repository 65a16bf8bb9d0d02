from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from ..lib.installer import (
    MSIEXEC,
    ExitPolicy,
    InstallOutcome,
    InstallTask,
    exe_install_args,
    msi_install_args,
)
from ..lib.manifests import InstallerSpec
from ..pipeline import ProvisionCtx


def merge_properties(base: Mapping[str, str], overrides: Mapping[str, str]) -> Dict[str, str]:
    """Overlay MSI properties; names compare case-insensitively like msiexec."""

    merged = dict(base)
    for key, value in overrides.items():
        for existing in [k for k in merged if k.upper() == key.upper()]:
            del merged[existing]
        merged[key] = value
    return merged


def build_task(
    ctx: ProvisionCtx,
    inst: InstallerSpec,
    *,
    extra_properties: Optional[Mapping[str, str]] = None,
    exit_policy: Optional[ExitPolicy] = None,
) -> InstallTask:
    package = ctx.artifact_path(inst.file)
    log_file = ctx.log_path(inst.log_name)
    props = merge_properties(inst.properties, extra_properties or {})
    policy = exit_policy or inst.exit_policy

    if inst.kind == "msi":
        argv = msi_install_args(package, props, log_file)
        return InstallTask(
            label=inst.label,
            executable=MSIEXEC,
            arguments=argv[1:],
            log_file=log_file,
            exit_policy=policy,
            native_log=True,
            requires_elevation=inst.requires_elevation,
            package=str(package),
            companion_files=inst.companion_files,
        )

    wrapped = bool(props) or inst.extract_dir is not None
    argv = exe_install_args(
        package,
        inst.args,
        extract_dir=inst.extract_dir,
        msi_properties=props if wrapped else None,
        log_file=log_file if wrapped else None,
    )
    return InstallTask(
        label=inst.label,
        executable=argv[0],
        arguments=argv[1:],
        log_file=log_file,
        exit_policy=policy,
        native_log=wrapped,
        requires_elevation=inst.requires_elevation,
        companion_files=inst.companion_files,
    )


def record_install(state: Dict[str, Any], outcome: InstallOutcome, log_file: Optional[str]) -> None:
    state.setdefault("installs", []).append(
        {
            "label": outcome.label,
            "exit_code": outcome.exit_code,
            "status": outcome.status.value,
            "tolerated": outcome.tolerated,
            "log": log_file,
        }
    )
    if outcome.reboot_required:
        state.setdefault("execution", {})["reboot_required"] = True
