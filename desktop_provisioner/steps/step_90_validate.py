from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.registry import is_installed
from ..pipeline import Phase, ProvisionCtx
from ..state_store import add_warning

logger = logging.getLogger(__name__)


class ValidateStep:
    step_id = "90_validate"
    phase = Phase.VALIDATED

    def run(self, ctx: ProvisionCtx, state: Dict[str, Any]) -> bool:
        probes = state.setdefault("probes", {})
        for inst in (*ctx.manifest.prereqs, ctx.manifest.install):
            present = is_installed(ctx.system, inst.display_name or "")
            probes.setdefault(inst.label, {})["after"] = present
            if not present and not ctx.dry_run:
                logger.warning("%s not detected after install (pattern %r)", inst.label, inst.display_name)
                add_warning(state, step=self.step_id, reason="not_detected", product=inst.label)

        exe = state.get("execution") or {}
        logger.info(
            "Validation summary: %s",
            ", ".join(f"{label}={'present' if p.get('after') else 'missing'}" for label, p in probes.items()),
        )
        if exe.get("reboot_required"):
            logger.warning("A reboot is required to complete installation")
        return True
