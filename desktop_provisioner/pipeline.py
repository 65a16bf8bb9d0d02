from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import requests

from .config import ProvisionConfig
from .lib.command import Runner, run_cmd
from .lib.manifests import ProductManifest
from .lib.registry import SystemFacade

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    START = "start"
    FETCHED = "fetched"
    PREREQS_SATISFIED = "prereqs_satisfied"
    MAIN_INSTALLED = "main_installed"
    PATCHED = "patched"
    LICENSED = "licensed"
    VALIDATED = "validated"
    DONE = "done"
    FAILED = "failed"


@dataclass
class ProvisionCtx:
    cfg: ProvisionConfig
    manifest: ProductManifest
    system: SystemFacade
    runner: Runner = run_cmd
    session: Optional[requests.Session] = None
    sleep: Callable[[float], None] = time.sleep
    artifacts: Dict[str, Path] = field(default_factory=dict)

    @property
    def dry_run(self) -> bool:
        return self.cfg.dry_run

    @property
    def download_dir(self) -> Path:
        return Path(self.cfg.download_dir)

    @property
    def logs_dir(self) -> Path:
        return Path(self.cfg.logs_dir)

    def log_path(self, name: str) -> str:
        return str(self.logs_dir / name)

    def artifact_path(self, name: str) -> Path:
        return self.artifacts.get(name) or (self.download_dir / name)


class Step(Protocol):
    """A single pipeline step; returns False when it skipped itself."""

    step_id: str
    phase: Phase

    def run(self, ctx: ProvisionCtx, state: Dict[str, Any]) -> bool:
        ...


@dataclass(frozen=True)
class PipelineResult:
    state: Dict[str, Any]
    ran_steps: List[str]
    skipped_steps: List[str]


def run_pipeline(
    *,
    ctx: ProvisionCtx,
    state: Dict[str, Any],
    steps: Sequence[Step],
) -> PipelineResult:
    """Run steps strictly in order.

    The phase advances after every step. Any exception moves the run to
    Phase.FAILED, records the failing step and propagates; completed steps
    are not rolled back.
    """

    ran: List[str] = []
    skipped: List[str] = []
    exe = state.setdefault("execution", {})

    for step in steps:
        exe["current_step"] = step.step_id
        logger.info("Running step %s", step.step_id)
        try:
            did_run = step.run(ctx, state)
        except Exception as e:
            logger.error("Step %s failed: %s", step.step_id, e)
            exe["phase"] = Phase.FAILED.value
            exe.setdefault("errors", []).append({"step": step.step_id, "error": str(e)})
            exe["ran_steps"] = ran
            exe["skipped_steps"] = skipped
            raise

        if did_run:
            ran.append(step.step_id)
        else:
            logger.info("Skipped step %s", step.step_id)
            skipped.append(step.step_id)
        exe["phase"] = step.phase.value

    exe["current_step"] = None
    exe["phase"] = Phase.DONE.value
    exe["ran_steps"] = ran
    exe["skipped_steps"] = skipped
    return PipelineResult(state=state, ran_steps=ran, skipped_steps=skipped)
