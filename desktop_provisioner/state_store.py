from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict

logger = logging.getLogger(__name__)


def _detect_format(path: Path) -> str:
    ext = path.suffix.lower().lstrip(".")
    if ext in {"json", "yaml", "yml"}:
        return ext
    # Default to JSON for unknown extensions.
    return "json"


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Write the run summary (json|yaml by extension)."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    fmt = _detect_format(p)
    if fmt in {"yaml", "yml"}:
        try:
            import yaml  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError("YAML summary requested but PyYAML is not available") from e
        p.write_text(yaml.safe_dump(state, sort_keys=False) + "\n", encoding="utf-8")
    else:
        p.write_text(json.dumps(state, indent=2, sort_keys=True, default=str) + "\n", encoding="utf-8")
    logger.info("Run summary written to %s", p)


def load_state(path: str) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        return {}
    if _detect_format(p) in {"yaml", "yml"}:
        import yaml  # type: ignore

        data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    else:
        data = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Summary file must be an object/dict, got {type(data)}")
    return data


def ensure_defaults(state: Dict[str, Any], *, product_id: str) -> Dict[str, Any]:
    """Fill required keys with defaults (without overriding existing values)."""

    state.setdefault("version", "1.0")
    state.setdefault("product", product_id)
    state.setdefault("artifacts", {})
    state.setdefault("probes", {})
    state.setdefault("installs", [])

    exe = state.setdefault("execution", {})
    exe.setdefault("phase", "start")
    exe.setdefault("current_step", None)
    exe.setdefault("ran_steps", [])
    exe.setdefault("skipped_steps", [])
    exe.setdefault("warnings", [])
    exe.setdefault("errors", [])
    exe.setdefault("reboot_required", False)
    return state


def add_warning(state: Dict[str, Any], **details: Any) -> None:
    state.setdefault("execution", {}).setdefault("warnings", []).append(details)
