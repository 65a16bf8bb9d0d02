from __future__ import annotations

import argparse
import logging
import os
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .config import ProvisionConfig, load_provision_config
from .errors import ConfigurationError, ProvisioningError
from .lib.command import Runner, run_cmd
from .lib.manifests import load_product_manifest
from .lib.registry import SystemFacade, WindowsSystem
from .logging_utils import configure_logging, shutdown_logging
from .pipeline import ProvisionCtx, run_pipeline
from .state_store import ensure_defaults, save_state
from .steps import (
    ApplyPatchStep,
    ConfigureLicenseStep,
    FetchArtifactsStep,
    InstallPrereqsStep,
    InstallProductStep,
    ValidateStep,
)

logger = logging.getLogger(__name__)

FME_FORM = "fme_form"
ARCGIS_PRO = "arcgis_pro"


def build_steps():
    return [
        FetchArtifactsStep(),
        InstallPrereqsStep(),
        InstallProductStep(),
        ApplyPatchStep(),
        ConfigureLicenseStep(),
        ValidateStep(),
    ]


def preflight(cfg: ProvisionConfig) -> None:
    """Configuration checks that must fail before any side effect."""

    logger.debug(
        "source=%s max_retries=%d retry_delay=%s exit_policy=%s",
        cfg.source,
        cfg.max_retries,
        cfg.retry_delay,
        cfg.exit_policy,
    )
    if cfg.configure_floating_license and not (cfg.license_server_host or "").strip():
        raise ConfigurationError("--configure-floating-license requires --license-server-host")


def run(
    product_id: str,
    cfg: ProvisionConfig,
    *,
    manifest_path: Optional[str] = None,
    system: Optional[SystemFacade] = None,
    runner: Runner = run_cmd,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Provision one product, writing a run summary next to the logs."""

    log_file = configure_logging(cfg.logs_dir)

    manifest = load_product_manifest(product_id, manifest_path)
    state = ensure_defaults({}, product_id=manifest.product_id)
    state["log_file"] = log_file
    summary_path = os.path.join(cfg.logs_dir, f"{manifest.product_id}-summary.json")

    try:
        preflight(cfg)
        ctx = ProvisionCtx(
            cfg=cfg,
            manifest=manifest,
            system=system or WindowsSystem(),
            runner=runner,
            session=session,
            sleep=sleep,
        )
        logger.info("Provisioning %s from %s (dry_run=%s)", manifest.name, cfg.source, cfg.dry_run)
        run_pipeline(ctx=ctx, state=state, steps=build_steps())
        return state
    except Exception as e:
        exe = state.setdefault("execution", {})
        if not exe.get("errors"):
            exe["phase"] = "failed"
            exe["errors"] = [{"step": exe.get("current_step"), "error": str(e)}]
        raise
    finally:
        save_state(summary_path, state)


def _property(value: str) -> tuple[str, str]:
    key, sep, val = value.partition("=")
    if not sep or not key.strip():
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {value!r}")
    return key.strip(), val


def build_parser(prog: str, *, licensing: bool) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog=prog)
    p.add_argument("--config", default=None, help="YAML config file (CLI options override it)")
    p.add_argument("--manifest", default=None, help="Replace the built-in product manifest (YAML)")
    p.add_argument("--source", default=None, help="Artifact source: https base URL, local or UNC directory")
    p.add_argument("--sas-token", default=None, help="Query token appended to remote artifact URLs")
    p.add_argument("--download-dir", default=None)
    p.add_argument("--logs-dir", default=None)
    p.add_argument("--max-retries", type=int, default=None, help="Download attempts per artifact")
    p.add_argument("--retry-delay", type=float, default=None, help="Seconds between download attempts")
    p.add_argument(
        "--property",
        dest="properties",
        action="append",
        type=_property,
        default=[],
        metavar="KEY=VALUE",
        help="Extra MSI property for the main installer (repeatable)",
    )
    p.add_argument("--exit-policy", choices=["strict", "tolerant"], default=None)
    p.add_argument("--dry-run", action="store_true", default=None, help="Log commands without executing them")
    if licensing:
        p.add_argument("--configure-floating-license", action="store_true", default=None)
        p.add_argument("--license-server-host", default=None)
        p.add_argument("--license-server-port", type=int, default=None)
    return p


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "source": args.source,
        "sas_token": args.sas_token,
        "dry_run": args.dry_run,
        "paths": {"download_dir": args.download_dir, "logs_dir": args.logs_dir},
        "download": {"max_retries": args.max_retries, "retry_delay": args.retry_delay},
        "installer": {
            "exit_policy": args.exit_policy,
            "properties": dict(args.properties) or None,
        },
        "licensing": {
            "configure_floating_license": getattr(args, "configure_floating_license", None),
            "server_host": getattr(args, "license_server_host", None),
            "server_port": getattr(args, "license_server_port", None),
        },
    }


def main(
    argv: Optional[List[str]] = None,
    *,
    product_id: str,
    prog: str,
    licensing: bool = False,
    system: Optional[SystemFacade] = None,
    runner: Runner = run_cmd,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    args = build_parser(prog, licensing=licensing).parse_args(argv)

    cfg: Optional[ProvisionConfig] = None
    try:
        cfg = load_provision_config(args.config, _overrides(args))
        run(
            product_id,
            cfg,
            manifest_path=args.manifest,
            system=system,
            runner=runner,
            session=session,
            sleep=sleep,
        )
        logger.info("Provisioning finished")
        return 0
    except (ProvisioningError, OSError) as e:
        where = f" (logs: {cfg.logs_dir})" if cfg else ""
        logger.error("Provisioning failed: %s%s", e, where)
        return 1
    finally:
        shutdown_logging()


def main_fme(argv: Optional[List[str]] = None, **kwargs: Any) -> int:
    return main(argv, product_id=FME_FORM, prog="provision-fme", licensing=True, **kwargs)


def main_arcgis_pro(argv: Optional[List[str]] = None, **kwargs: Any) -> int:
    return main(argv, product_id=ARCGIS_PRO, prog="provision-arcgis-pro", **kwargs)


if __name__ == "__main__":
    raise SystemExit(main_arcgis_pro())
