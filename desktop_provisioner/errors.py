from __future__ import annotations

from typing import Optional


class ProvisioningError(RuntimeError):
    """Fatal condition; aborts the remaining pipeline."""


class DownloadError(ProvisioningError):
    pass


class MissingArtifactError(ProvisioningError):
    pass


class ConfigurationError(ProvisioningError):
    pass


class LaunchError(ProvisioningError):
    """An external program could not be started at all."""


class InstallerError(ProvisioningError):
    def __init__(self, label: str, exit_code: int, log_path: Optional[str] = None) -> None:
        self.label = label
        self.exit_code = exit_code
        self.log_path = log_path
        msg = f"{label} failed with exit code {exit_code}"
        if log_path:
            msg += f" (log: {log_path})"
        super().__init__(msg)
