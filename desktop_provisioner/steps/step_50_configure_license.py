from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.licensing import configure_floating_license
from ..pipeline import Phase, ProvisionCtx

logger = logging.getLogger(__name__)


class ConfigureLicenseStep:
    step_id = "50_configure_license"
    phase = Phase.LICENSED

    def run(self, ctx: ProvisionCtx, state: Dict[str, Any]) -> bool:
        lic = ctx.manifest.licensing
        if lic is None or not ctx.cfg.configure_floating_license:
            return False

        port = ctx.cfg.license_server_port or lic.default_port
        pointer = configure_floating_license(
            ctx.system,
            ctx.cfg.license_server_host,
            port,
            env_var=lic.env_var,
            audit_log=ctx.log_path(lic.log_name),
            tool_path=lic.tool_path,
            runner=ctx.runner,
            dry_run=ctx.dry_run,
        )
        state["license"] = {"env_var": lic.env_var, "value": pointer}
        return True
