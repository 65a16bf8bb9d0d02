from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.installer import run_installer
from ..lib.registry import is_installed
from ..pipeline import Phase, ProvisionCtx
from ..state_store import add_warning
from .common import build_task, record_install

logger = logging.getLogger(__name__)


class InstallProductStep:
    step_id = "30_install_product"
    phase = Phase.MAIN_INSTALLED

    def run(self, ctx: ProvisionCtx, state: Dict[str, Any]) -> bool:
        inst = ctx.manifest.install
        present = is_installed(ctx.system, inst.display_name or "")
        state.setdefault("probes", {})[inst.label] = {"before": present}
        if present:
            logger.info("%s already installed; skipping", inst.label)
            return False

        task = build_task(
            ctx,
            inst,
            extra_properties=ctx.cfg.msi_properties,
            exit_policy=ctx.cfg.exit_policy,
        )
        outcome = run_installer(task, runner=ctx.runner, elevated=ctx.system.is_elevated(), dry_run=ctx.dry_run)
        record_install(state, outcome, task.log_file)
        if outcome.tolerated:
            add_warning(state, step=self.step_id, installer=inst.label, exit_code=outcome.exit_code)
        return True
