from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ConfigurationError
from .installer import ExitPolicy


def _package_root() -> Path:
    # desktop_provisioner/lib/manifests.py -> desktop_provisioner
    return Path(__file__).resolve().parents[1]


def load_yaml(path: str | Path) -> Dict[str, Any]:
    """Load a YAML mapping from disk."""
    try:
        import yaml  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError("PyYAML required to load manifests and config files") from e

    p = Path(path)
    if not p.exists():
        raise ConfigurationError(f"File not found: {p}")
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"YAML file must contain a mapping: {p}")
    return data


def load_yaml_rel(rel_path: str) -> Dict[str, Any]:
    """Load a YAML file shipped inside the package (manifests/...)."""
    return load_yaml(_package_root() / rel_path.lstrip("/"))


@dataclass(frozen=True)
class InstallerSpec:
    label: str
    kind: str
    file: str
    log_name: str
    display_name: Optional[str] = None
    args: Tuple[str, ...] = ()
    properties: Dict[str, str] = field(default_factory=dict)
    extract_dir: Optional[str] = None
    companion_files: Tuple[str, ...] = ()
    exit_policy: ExitPolicy = ExitPolicy.STRICT
    requires_elevation: bool = False


@dataclass(frozen=True)
class PatchSpec:
    file: str
    log_name: str


@dataclass(frozen=True)
class LicensingSpec:
    env_var: str
    log_name: str
    tool_path: Optional[str] = None
    default_port: int = 27000


@dataclass(frozen=True)
class ProductManifest:
    product_id: str
    name: str
    install: InstallerSpec
    prereqs: Tuple[InstallerSpec, ...] = ()
    patch: Optional[PatchSpec] = None
    licensing: Optional[LicensingSpec] = None

    @property
    def artifacts(self) -> List[str]:
        names: List[str] = []
        for inst in (*self.prereqs, self.install):
            for n in (inst.file, *inst.companion_files):
                if n not in names:
                    names.append(n)
        if self.patch and self.patch.file not in names:
            names.append(self.patch.file)
        return names

    @property
    def optional_artifacts(self) -> List[str]:
        return [self.patch.file] if self.patch else []


def _require(obj: Dict[str, Any], key: str, where: str) -> Any:
    value = obj.get(key)
    if value in (None, ""):
        raise ConfigurationError(f"{where}: '{key}' is required")
    return value


def _parse_installer(obj: Any, where: str) -> InstallerSpec:
    if not isinstance(obj, dict):
        raise ConfigurationError(f"{where} must be a mapping")

    kind = str(_require(obj, "kind", where)).strip().lower()
    if kind not in {"msi", "exe"}:
        raise ConfigurationError(f"{where}: unsupported kind {kind!r} (expected msi|exe)")

    props = obj.get("properties") or {}
    if not isinstance(props, dict):
        raise ConfigurationError(f"{where}: properties must be a mapping")
    args = obj.get("args") or []
    if not isinstance(args, list):
        raise ConfigurationError(f"{where}: args must be a list")

    return InstallerSpec(
        label=str(obj.get("label") or where),
        kind=kind,
        file=str(_require(obj, "file", where)),
        log_name=str(obj.get("log_name") or f"{where}.log"),
        display_name=obj.get("display_name"),
        args=tuple(str(a) for a in args),
        properties={str(k): str(v) for k, v in props.items()},
        extract_dir=obj.get("extract_dir"),
        companion_files=tuple(str(c) for c in (obj.get("companion_files") or [])),
        exit_policy=ExitPolicy.parse(obj.get("exit_policy", "strict")),
        requires_elevation=bool(obj.get("requires_elevation", False)),
    )


def parse_product_manifest(raw: Dict[str, Any]) -> ProductManifest:
    product_id = str(_require(raw, "product", "manifest"))

    prereqs_raw = raw.get("prereqs") or []
    if not isinstance(prereqs_raw, list):
        raise ConfigurationError(f"{product_id}: prereqs must be a list")
    prereqs = tuple(_parse_installer(p, f"{product_id}.prereqs[{i}]") for i, p in enumerate(prereqs_raw))
    for p in prereqs:
        if not p.display_name:
            raise ConfigurationError(f"{product_id}: prerequisite {p.label} needs a display_name probe")

    install = _parse_installer(_require(raw, "install", product_id), f"{product_id}.install")
    if not install.display_name:
        raise ConfigurationError(f"{product_id}.install: display_name is required")

    patch = None
    if raw.get("patch"):
        p = raw["patch"]
        patch = PatchSpec(
            file=str(_require(p, "file", f"{product_id}.patch")),
            log_name=str(p.get("log_name") or f"{product_id}_patch.log"),
        )

    licensing = None
    if raw.get("licensing"):
        lic = raw["licensing"]
        licensing = LicensingSpec(
            env_var=str(_require(lic, "env_var", f"{product_id}.licensing")),
            log_name=str(lic.get("log_name") or f"{product_id}_licensing.log"),
            tool_path=lic.get("tool_path"),
            default_port=int(lic.get("default_port", 27000)),
        )

    return ProductManifest(
        product_id=product_id,
        name=str(raw.get("name") or product_id),
        install=install,
        prereqs=prereqs,
        patch=patch,
        licensing=licensing,
    )


def load_product_manifest(product_id: str, path: Optional[str] = None) -> ProductManifest:
    raw = load_yaml(path) if path else load_yaml_rel(f"manifests/products/{product_id}.yaml")
    return parse_product_manifest(raw)
