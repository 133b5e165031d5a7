"""Pytest configuration and shared fixtures for engine tests."""
from __future__ import annotations

import plistlib
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytest

# Add src/ to path for imports when the package is not installed
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from iocsentry.config import EngineSettings  # noqa: E402
from iocsentry.core.injection import (  # noqa: E402
    DependencyContainer,
    MockOSInterface,
    reset_container,
    set_container,
)
from iocsentry.registry import IndicatorRegistry  # noqa: E402
from iocsentry.types import (  # noqa: E402
    Expectation,
    IndicatorDefinition,
    ProviderKind,
    Remediation,
    Scope,
    ScopeContext,
)
from iocsentry.utils.commands import CommandResult  # noqa: E402

USERS_ROOT = Path("/Users")
MEDIA_DOMAIN = "com.apple.MediaToolbox"

AUDIO_FORMATS = [
    "ac3IsDecodable:YES",
    "ec3IsDecodable:YES",
    "atmosIsDecodable:NO",
    "ac3CanPassthrough:NO",
    "ec3CanPassthrough:NO",
    "atmosCanPassthrough:NO",
]


# ==============================================================================
# Host fixtures
# ==============================================================================


class FakeHost(MockOSInterface):
    """MockOSInterface with helpers for laying out user homes."""

    def __init__(self, users_root: Path = USERS_ROOT) -> None:
        super().__init__()
        self.users_root = users_root
        self._homes: List[Path] = []
        self.mock_directory(users_root, [])

    def add_home(self, name: str, *, account: bool = True, is_dir: bool = True) -> Path:
        home = self.users_root / name
        if is_dir:
            self.mock_directory(home, [])
        else:
            self.mock_file(home, b"")
        if account:
            self.mock_account(name)
        self._homes.append(home)
        self.mock_directory(self.users_root, list(self._homes))
        return home

    def media_plist(self, home: Path) -> Path:
        return home / "Library" / "Preferences" / f"{MEDIA_DOMAIN}.plist"

    def set_preferences(self, home: Path, values: Dict[str, Any], **kwargs: Any) -> Path:
        plist = self.media_plist(home)
        self.mock_plist(plist, values, **kwargs)
        return plist

    def preferences(self, home: Path) -> Dict[str, Any]:
        return plistlib.loads(self._files[self.media_plist(home)])


@pytest.fixture
def mock_os() -> MockOSInterface:
    return MockOSInterface()


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def container(host: FakeHost):
    """Install a container backed by the fake host for the test."""
    container = DependencyContainer(os_interface=host)
    set_container(container)
    yield container
    reset_container()


@pytest.fixture
def system_scope() -> ScopeContext:
    return ScopeContext.system()


@pytest.fixture
def alice_scope() -> ScopeContext:
    return ScopeContext.for_user("alice", USERS_ROOT / "alice")


# ==============================================================================
# Definition factories
# ==============================================================================


def make_definition(
    indicator_id: str = "ind-1",
    *,
    scope: Scope = Scope.SYSTEM_WIDE,
    provider: ProviderKind = ProviderKind.FILE_EXISTENCE,
    args: Optional[Dict[str, Any]] = None,
    expectation: Optional[Expectation] = None,
    remediation: Optional[Remediation] = None,
) -> IndicatorDefinition:
    return IndicatorDefinition(
        id=indicator_id,
        scope=scope,
        provider_kind=provider,
        provider_args=args if args is not None else {"path": "/tmp/GmaNi4v50ekNZSI"},
        expectation=expectation or Expectation.must_not_exist(),
        remediation=remediation or Remediation.none(),
    )


@pytest.fixture
def definition_factory():
    return make_definition


def proc_record(**overrides: Any) -> Dict[str, Any]:
    record = {
        "id": "proc-1",
        "scope": "system",
        "provider": "process_pattern",
        "args": {"pattern": "/private/tmp/p"},
        "expect": "must_not_exist",
        "remediation": "kill",
    }
    record.update(overrides)
    return record


def pref_record(**overrides: Any) -> Dict[str, Any]:
    record = {
        "id": "pref-1",
        "scope": "user",
        "provider": "preference_key",
        "args": {"domain": MEDIA_DOMAIN, "key": "AllowedCPC"},
        "expect": {"must_equal": "0x3"},
        "remediation": {"reset_preference": "0x3"},
    }
    record.update(overrides)
    return record


def tmp_record(**overrides: Any) -> Dict[str, Any]:
    record = {
        "id": "tmp-1",
        "scope": "system",
        "provider": "file_existence",
        "args": {"path": "/tmp/GmaNi4v50ekNZSI"},
        "expect": "must_not_exist",
        "remediation": "delete",
    }
    record.update(overrides)
    return record


def log_record(**overrides: Any) -> Dict[str, Any]:
    record = {
        "id": "log-dscl",
        "scope": "system",
        "provider": "log_pattern",
        "args": {"predicate": 'eventMessage contains "dscl"', "window": "24h"},
        "expect": "must_not_exist",
    }
    record.update(overrides)
    return record


def build_registry(records: Iterable[Dict[str, Any]], **settings: Any) -> IndicatorRegistry:
    data: Dict[str, Any] = {"indicators": list(records)}
    if settings:
        data["settings"] = settings
    return IndicatorRegistry.load(data)


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings(users_root=USERS_ROOT)


def log_events(*messages: str) -> CommandResult:
    """Fake ``log show --style ndjson`` output."""
    lines = [f'{{"eventMessage": "{message}", "processImagePath": "/usr/bin/dscl"}}' for message in messages]
    lines.append('{"count": %d, "finished": 1}' % len(messages))
    return CommandResult(stdout="\n".join(lines), stderr="", returncode=0)
