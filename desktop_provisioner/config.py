from __future__ import annotations

import copy
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .errors import ConfigurationError
from .lib.env import PATHS
from .lib.installer import ExitPolicy
from .lib.manifests import load_yaml


@dataclass(frozen=True)
class ProvisionConfig:
    raw: Dict[str, Any]

    @property
    def source(self) -> str:
        value = self.raw.get("source")
        if not value:
            raise ConfigurationError("No artifact source given (--source or 'source' in config)")
        return str(value)

    @property
    def sas_token(self) -> Optional[str]:
        return self.raw.get("sas_token") or None

    @property
    def download_dir(self) -> str:
        return str(((self.raw.get("paths") or {}).get("download_dir")) or PATHS.download_default)

    @property
    def logs_dir(self) -> str:
        return str(((self.raw.get("paths") or {}).get("logs_dir")) or PATHS.logs_default)

    @property
    def max_retries(self) -> int:
        raw = (self.raw.get("download") or {}).get("max_retries")
        value = 3 if raw is None else int(raw)
        if value < 1:
            raise ConfigurationError(f"max_retries must be >= 1, got {value}")
        return value

    @property
    def retry_delay(self) -> float:
        raw = (self.raw.get("download") or {}).get("retry_delay")
        value = 10.0 if raw is None else float(raw)
        if value < 0:
            raise ConfigurationError(f"retry_delay must be >= 0, got {value}")
        return value

    @property
    def dry_run(self) -> bool:
        return bool(self.raw.get("dry_run", False))

    @property
    def configure_floating_license(self) -> bool:
        return bool((self.raw.get("licensing") or {}).get("configure_floating_license", False))

    @property
    def license_server_host(self) -> Optional[str]:
        return (self.raw.get("licensing") or {}).get("server_host") or None

    @property
    def license_server_port(self) -> Optional[int]:
        value = (self.raw.get("licensing") or {}).get("server_port")
        return None if value is None else int(value)

    @property
    def msi_properties(self) -> Dict[str, str]:
        props = (self.raw.get("installer") or {}).get("properties") or {}
        if not isinstance(props, dict):
            raise ConfigurationError("installer.properties must be a mapping")
        return {str(k): str(v) for k, v in props.items()}

    @property
    def exit_policy(self) -> Optional[ExitPolicy]:
        value = (self.raw.get("installer") or {}).get("exit_policy")
        return ExitPolicy.parse(value) if value else None


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def load_provision_config(path: Optional[str] = None, overrides: Optional[Dict[str, Any]] = None) -> ProvisionConfig:
    """Defaults < YAML file < overrides (CLI). ``None`` overrides are ignored."""

    raw: Dict[str, Any] = {}
    if path:
        p = Path(path)
        if p.suffix.lower() not in {".yaml", ".yml"}:
            raise ConfigurationError(f"config file must be YAML: {p}")
        raw = load_yaml(p)

    raw = _merge(copy.deepcopy(raw), overrides or {})
    return ProvisionConfig(raw=raw)
