"""
Shared fakes: no test touches the real registry, environment, network or
installers.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

import pytest
import requests

from desktop_provisioner.lib.command import CmdResult
from desktop_provisioner.lib.env import UNINSTALL_KEYS


class FakeSystem:
    """In-memory SystemFacade."""

    def __init__(
        self,
        native: Iterable[str] = (),
        wow64: Iterable[str] = (),
        *,
        unreadable: Iterable[str] = (),
        elevated: bool = True,
    ) -> None:
        self.subtrees: Dict[str, List[str]] = {
            UNINSTALL_KEYS.native: list(native),
            UNINSTALL_KEYS.wow64: list(wow64),
        }
        self.unreadable = set(unreadable)
        self.env: Dict[str, str] = {}
        self.elevated = elevated

    def install(self, display_name: str) -> None:
        self.subtrees[UNINSTALL_KEYS.native].append(display_name)

    def uninstall_display_names(self, subtree: str) -> List[str]:
        if subtree in self.unreadable:
            raise PermissionError(f"access denied: {subtree}")
        return list(self.subtrees.get(subtree, []))

    def set_machine_environment(self, name: str, value: str) -> None:
        self.env[name] = value

    def is_elevated(self) -> bool:
        return self.elevated


class RecordingRunner:
    """run_cmd stand-in; exit codes are chosen by substring of any argv item."""

    def __init__(
        self,
        exit_codes: Optional[Dict[str, int]] = None,
        on_run: Optional[Callable[[List[str]], None]] = None,
    ) -> None:
        self.exit_codes = exit_codes or {}
        self.on_run = on_run
        self.calls: List[List[str]] = []

    def __call__(self, argv, *, check: bool = True, dry_run: bool = False, **kwargs) -> CmdResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        code = 0
        for needle, c in self.exit_codes.items():
            if any(needle in a for a in argv):
                code = c
        if self.on_run and not dry_run:
            self.on_run(argv)
        return CmdResult(argv=argv, returncode=code, stdout="", stderr="")


class FakeResponse:
    def __init__(self, url: str, body: bytes, status: int = 200) -> None:
        self.url = url
        self.body = body
        self.status_code = status

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} for {self.url}")

    def iter_content(self, chunk_size: int = 1):
        yield self.body


class FakeSession:
    """Serves artifacts by file name; ``error`` is raised on every request."""

    def __init__(self, files: Optional[Dict[str, bytes]] = None, error: Optional[Exception] = None) -> None:
        self.files = files or {}
        self.error = error
        self.calls: List[str] = []
        self.closed = False

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *exc) -> None:
        self.closed = True

    def get(self, url: str, stream: bool = False, timeout: Optional[float] = None) -> FakeResponse:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        name = url.split("?", 1)[0].rsplit("/", 1)[-1]
        if name not in self.files:
            return FakeResponse(url, b"", status=404)
        return FakeResponse(url, self.files[name])


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()
