from __future__ import annotations

import ctypes
import fnmatch
import logging
from typing import Iterable, List, Optional, Protocol

from .env import MACHINE_ENVIRONMENT_KEY, UNINSTALL_KEYS

try:
    import winreg
except ImportError:  # pragma: no cover - non-Windows hosts
    winreg = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

HWND_BROADCAST = 0xFFFF
WM_SETTINGCHANGE = 0x001A
SMTO_ABORTIFHUNG = 0x0002


class SystemFacade(Protocol):
    """Machine-wide state the provisioner reads or mutates."""

    def uninstall_display_names(self, subtree: str) -> Iterable[str]:
        """DisplayName of every entry under an HKLM uninstall subtree.

        Raises OSError when the subtree cannot be read.
        """
        ...

    def set_machine_environment(self, name: str, value: str) -> None:
        ...

    def is_elevated(self) -> bool:
        ...


class WindowsSystem:
    """SystemFacade backed by winreg and the Win32 API."""

    def __init__(self) -> None:
        if winreg is None:
            raise RuntimeError("winreg not available on this platform")

    def uninstall_display_names(self, subtree: str) -> List[str]:
        names: List[str] = []
        # KEY_WOW64_64KEY keeps the native view even from a 32-bit interpreter.
        access = winreg.KEY_READ | winreg.KEY_WOW64_64KEY
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, subtree, 0, access) as root:
            index = 0
            while True:
                try:
                    child = winreg.EnumKey(root, index)
                except OSError:
                    break
                index += 1
                try:
                    with winreg.OpenKey(root, child, 0, access) as key:
                        value, _ = winreg.QueryValueEx(key, "DisplayName")
                except OSError:
                    continue
                if isinstance(value, str) and value:
                    names.append(value)
        return names

    def set_machine_environment(self, name: str, value: str) -> None:
        access = winreg.KEY_SET_VALUE | winreg.KEY_WOW64_64KEY
        with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, MACHINE_ENVIRONMENT_KEY, 0, access) as key:
            winreg.SetValueEx(key, name, 0, winreg.REG_SZ, value)
        result = ctypes.c_ulong()
        ctypes.windll.user32.SendMessageTimeoutW(  # type: ignore[attr-defined]
            HWND_BROADCAST, WM_SETTINGCHANGE, 0, "Environment", SMTO_ABORTIFHUNG, 5000, ctypes.byref(result)
        )
        logger.info("Machine environment %s=%s", name, value)

    def is_elevated(self) -> bool:
        try:
            return bool(ctypes.windll.shell32.IsUserAnAdmin())  # type: ignore[attr-defined]
        except (AttributeError, OSError):
            return False


def find_installed(system: SystemFacade, display_name_pattern: str) -> Optional[str]:
    """Return the first DisplayName matching the glob, or None.

    Both the native and the WOW6432Node uninstall subtrees are scanned.
    Matching is case-insensitive. An unreadable subtree is treated as
    having no entries.
    """

    pattern = display_name_pattern.lower()
    for subtree in UNINSTALL_KEYS.all():
        try:
            names = list(system.uninstall_display_names(subtree))
        except OSError as e:
            logger.debug("Uninstall subtree %s unreadable: %s", subtree, e)
            continue
        for name in names:
            if fnmatch.fnmatchcase(name.lower(), pattern):
                return name
    return None


def is_installed(system: SystemFacade, display_name_pattern: str) -> bool:
    match = find_installed(system, display_name_pattern)
    if match:
        logger.info("Installed: %s (matched %r)", match, display_name_pattern)
    return match is not None
