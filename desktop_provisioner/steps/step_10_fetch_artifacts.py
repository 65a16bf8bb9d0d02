from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.fetch import fetch_artifacts
from ..pipeline import Phase, ProvisionCtx

logger = logging.getLogger(__name__)


class FetchArtifactsStep:
    step_id = "10_fetch_artifacts"
    phase = Phase.FETCHED

    def run(self, ctx: ProvisionCtx, state: Dict[str, Any]) -> bool:
        manifest = ctx.manifest
        fetched = fetch_artifacts(
            ctx.cfg.source,
            manifest.artifacts,
            ctx.download_dir,
            retries=ctx.cfg.max_retries,
            delay_seconds=ctx.cfg.retry_delay,
            query_token=ctx.cfg.sas_token,
            optional=manifest.optional_artifacts,
            session=ctx.session,
            sleep=ctx.sleep,
            dry_run=ctx.dry_run,
        )
        ctx.artifacts.update(fetched)
        state.setdefault("artifacts", {}).update({name: str(p) for name, p in fetched.items()})

        logger.info("Fetched %d/%d artifacts for %s", len(fetched), len(manifest.artifacts), manifest.name)
        return True
