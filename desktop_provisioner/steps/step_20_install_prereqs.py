from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.installer import run_installer
from ..lib.registry import is_installed
from ..pipeline import Phase, ProvisionCtx
from ..state_store import add_warning
from .common import build_task, record_install

logger = logging.getLogger(__name__)


class InstallPrereqsStep:
    step_id = "20_install_prereqs"
    phase = Phase.PREREQS_SATISFIED

    def run(self, ctx: ProvisionCtx, state: Dict[str, Any]) -> bool:
        ran = False
        for inst in ctx.manifest.prereqs:
            present = is_installed(ctx.system, inst.display_name or "")
            state.setdefault("probes", {})[inst.label] = {"before": present}
            if present:
                logger.info("Prerequisite %s already installed; skipping", inst.label)
                continue

            task = build_task(ctx, inst)
            outcome = run_installer(
                task, runner=ctx.runner, elevated=ctx.system.is_elevated(), dry_run=ctx.dry_run
            )
            record_install(state, outcome, task.log_file)
            if outcome.tolerated:
                add_warning(state, step=self.step_id, installer=inst.label, exit_code=outcome.exit_code)
            ran = True
        return ran
