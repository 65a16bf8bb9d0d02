from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Paths:
    download_default: str = r"C:\ProgramData\DesktopProvisioner\downloads"
    logs_default: str = r"C:\ProgramData\DesktopProvisioner\logs"


@dataclass(frozen=True)
class UninstallKeys:
    native: str = r"SOFTWARE\Microsoft\Windows\CurrentVersion\Uninstall"
    wow64: str = r"SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall"

    def all(self) -> tuple[str, str]:
        return (self.native, self.wow64)


PATHS = Paths()
UNINSTALL_KEYS = UninstallKeys()

MACHINE_ENVIRONMENT_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
