from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.installer import MSIEXEC, ExitPolicy, InstallTask, msp_patch_args, run_installer
from ..pipeline import Phase, ProvisionCtx
from ..state_store import add_warning
from .common import record_install

logger = logging.getLogger(__name__)


class ApplyPatchStep:
    step_id = "40_apply_patch"
    phase = Phase.PATCHED

    def run(self, ctx: ProvisionCtx, state: Dict[str, Any]) -> bool:
        patch = ctx.manifest.patch
        if patch is None:
            return False

        path = ctx.artifact_path(patch.file)
        # Only a file this run fetched counts; leftovers in download_dir do not.
        if not ctx.dry_run and patch.file not in ctx.artifacts:
            logger.warning("Patch %s was not fetched; skipping patch", patch.file)
            add_warning(state, step=self.step_id, reason="patch_file_missing", path=str(path))
            return False

        log_file = ctx.log_path(patch.log_name)
        argv = msp_patch_args(path, log_file)
        task = InstallTask(
            label=f"{ctx.manifest.name} patch {patch.file}",
            executable=MSIEXEC,
            arguments=argv[1:],
            log_file=log_file,
            exit_policy=ExitPolicy.STRICT,
            native_log=True,
            package=str(path),
        )
        outcome = run_installer(task, runner=ctx.runner, dry_run=ctx.dry_run)
        record_install(state, outcome, log_file)
        return True
