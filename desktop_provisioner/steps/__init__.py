from .step_10_fetch_artifacts import FetchArtifactsStep
from .step_20_install_prereqs import InstallPrereqsStep
from .step_30_install_product import InstallProductStep
from .step_40_apply_patch import ApplyPatchStep
from .step_50_configure_license import ConfigureLicenseStep
from .step_90_validate import ValidateStep

__all__ = [
    "FetchArtifactsStep",
    "InstallPrereqsStep",
    "InstallProductStep",
    "ApplyPatchStep",
    "ConfigureLicenseStep",
    "ValidateStep",
]
