"""Policy guards: host-level vetoes over remediation actions."""
from __future__ import annotations

import logging
import os
from pathlib import PurePosixPath
from typing import Callable, Iterable, Optional, Sequence, Tuple

from .core.interfaces import PolicyGuard
from .types import RemediationKind
from .utils.system_info import is_sip_enabled

logger = logging.getLogger(__name__)

# Locations System Integrity Protection makes read-only, even for root
SIP_PROTECTED_ROOTS: Tuple[str, ...] = ("/System", "/bin", "/sbin", "/usr")
SIP_EXEMPT_ROOTS: Tuple[str, ...] = ("/usr/local",)


def _is_under(path: str, root: str) -> bool:
    candidate = PurePosixPath(path)
    base = PurePosixPath(root)
    return candidate == base or base in candidate.parents


class AllowAllPolicy:
    """Default guard: nothing is vetoed."""

    def allows(self, action: RemediationKind, target: str) -> bool:
        return True

    def reason(self, action: RemediationKind, target: str) -> str:
        return ""


class SystemIntegrityPolicy:
    """Veto what SIP would refuse anyway, plus killing critical processes.

    Paths under SIP-protected roots are off limits while SIP is enabled.
    Killing launchd (pid 1) or the engine itself is always refused.
    """

    def __init__(
        self,
        sip_enabled: Optional[bool] = None,
        protected_pids: Iterable[int] = (),
        sip_check: Callable[[], bool] = is_sip_enabled,
    ) -> None:
        self._sip_enabled = sip_enabled
        self._sip_check = sip_check
        self.protected_pids = frozenset({1, os.getpid(), *protected_pids})

    @property
    def sip_enabled(self) -> bool:
        if self._sip_enabled is None:
            self._sip_enabled = self._sip_check()
            logger.debug("SIP enabled: %s", self._sip_enabled)
        return self._sip_enabled

    def _protected_path(self, target: str) -> bool:
        if any(_is_under(target, root) for root in SIP_EXEMPT_ROOTS):
            return False
        return any(_is_under(target, root) for root in SIP_PROTECTED_ROOTS)

    def allows(self, action: RemediationKind, target: str) -> bool:
        if action is RemediationKind.KILL:
            return not (target.isdigit() and int(target) in self.protected_pids)
        return not (self._protected_path(target) and self.sip_enabled)

    def reason(self, action: RemediationKind, target: str) -> str:
        if action is RemediationKind.KILL:
            return f"refusing to kill protected process {target}"
        return f"{target} is protected by System Integrity Protection"


class ProtectedPathPolicy:
    """Veto any action on configured paths (and everything below them)."""

    def __init__(self, protected_paths: Sequence[str]) -> None:
        self.protected_paths = tuple(protected_paths)

    def _match(self, target: str) -> Optional[str]:
        for root in self.protected_paths:
            if _is_under(target, root):
                return root
        return None

    def allows(self, action: RemediationKind, target: str) -> bool:
        return action is RemediationKind.KILL or self._match(target) is None

    def reason(self, action: RemediationKind, target: str) -> str:
        return f"{target} is under protected path {self._match(target)}"


class CompositePolicy:
    """Allow only what every guard allows; report the first veto."""

    def __init__(self, guards: Iterable[PolicyGuard]) -> None:
        self.guards = tuple(guards)

    def _first_veto(self, action: RemediationKind, target: str) -> Optional[PolicyGuard]:
        for guard in self.guards:
            if not guard.allows(action, target):
                return guard
        return None

    def allows(self, action: RemediationKind, target: str) -> bool:
        return self._first_veto(action, target) is None

    def reason(self, action: RemediationKind, target: str) -> str:
        guard = self._first_veto(action, target)
        return guard.reason(action, target) if guard else ""
