"""Remediation executor: applies an indicator's fix to a violated target.

Every action is idempotent (a target that is already fixed or already gone
counts as done), passes the policy guard first, and is reported as an
outcome rather than raised.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from .core.interfaces import OSInterface, PolicyGuard
from .errors import PolicyVeto, RemediationFailure
from .policy import AllowAllPolicy
from .providers.preferences import preference_plist
from .types import (
    IndicatorDefinition,
    RemediationKind,
    RemediationOutcome,
    ScopeContext,
    Verdict,
)
from .utils.commands import CommandExecutionError
from .utils.parsers import format_mode

logger = logging.getLogger(__name__)


class RemediationExecutor:
    """Apply remediations through the injected OS interface.

    Args:
        os_interface: host access used for the mutating calls
        policy_guard: veto check consulted before each target (default allow)
        dry_run: report ``WouldApply`` instead of mutating anything
    """

    def __init__(
        self,
        os_interface: OSInterface,
        policy_guard: Optional[PolicyGuard] = None,
        dry_run: bool = False,
    ) -> None:
        self.os = os_interface
        self.policy_guard = policy_guard or AllowAllPolicy()
        self.dry_run = dry_run
        self._actions: Dict[RemediationKind, Callable[[IndicatorDefinition, str], bool]] = {
            RemediationKind.KILL: self._kill,
            RemediationKind.DELETE: self._delete,
            RemediationKind.LOCK: self._lock,
            RemediationKind.RESTORE_PERMISSIONS: self._restore_permissions,
            RemediationKind.RESET_PREFERENCE: self._reset_preference,
        }

    def targets_for(self, definition: IndicatorDefinition, scope: ScopeContext, verdict: Verdict) -> Tuple[str, ...]:
        """Concrete targets the remediation acts on."""
        if definition.remediation.kind is RemediationKind.RESET_PREFERENCE:
            # The preference is rewritten even when the plist does not exist yet
            return (str(preference_plist(definition, scope)),)
        return verdict.targets

    def remediate(
        self,
        definition: IndicatorDefinition,
        scope: ScopeContext,
        verdict: Verdict,
    ) -> RemediationOutcome:
        """Apply the configured fix. Never raises for host errors.

        Raises:
            ValueError: if called for a non-violated verdict or an indicator
                without a remediation
        """
        action = definition.remediation.kind
        if not verdict.is_violated:
            raise ValueError(f"refusing to remediate {definition.id}: verdict is {verdict.status.value}")
        if not definition.remediation.is_actionable:
            raise ValueError(f"indicator {definition.id} has no remediation")

        targets = self.targets_for(definition, scope, verdict)
        if not targets:
            return RemediationOutcome.skipped(action, "target does not exist")

        allowed: List[str] = []
        vetoes: List[str] = []
        for target in targets:
            try:
                self._check_policy(action, target)
            except PolicyVeto as veto:
                logger.info("Policy veto for %s [%s]: %s", definition.id, scope.label, veto.reason)
                vetoes.append(veto.reason)
            else:
                allowed.append(target)
        if not allowed:
            return RemediationOutcome.skipped(action, "; ".join(vetoes), targets)

        if self.dry_run:
            logger.info("[dry-run] would %s %s", definition.remediation.describe(), ", ".join(allowed))
            return RemediationOutcome.would_apply(action, allowed)

        applied: List[str] = []
        missing: List[str] = []
        failures: List[str] = []
        for target in allowed:
            try:
                if self._apply(definition, target):
                    applied.append(target)
                else:
                    missing.append(target)
            except RemediationFailure as exc:
                logger.error("Remediation %s failed for %s: %s", action.value, target, exc)
                failures.append(f"{target}: {exc}")
            except Exception as exc:  # noqa: BLE001 - one target must not abort the run
                logger.exception("Unexpected error remediating %s on %s", definition.id, target)
                failures.append(f"{target}: {type(exc).__name__}: {exc}")

        if failures:
            return RemediationOutcome.failed(action, "; ".join(failures), allowed)
        if not applied:
            return RemediationOutcome.skipped(action, "target does not exist", allowed)
        notes = []
        if missing:
            notes.append(f"already gone: {', '.join(missing)}")
        if vetoes:
            notes.append(f"vetoed: {'; '.join(vetoes)}")
        logger.info("Applied %s for %s [%s]", definition.remediation.describe(), definition.id, scope.label)
        return RemediationOutcome.applied(action, applied, "; ".join(notes))

    def _check_policy(self, action: RemediationKind, target: str) -> None:
        if not self.policy_guard.allows(action, target):
            raise PolicyVeto(action.value, target, self.policy_guard.reason(action, target) or "vetoed by policy")

    def _apply(self, definition: IndicatorDefinition, target: str) -> bool:
        """Run one action; False when the target no longer exists."""
        try:
            return self._actions[definition.remediation.kind](definition, target)
        except CommandExecutionError as exc:
            raise RemediationFailure(exc.stderr.strip() or str(exc), target=target) from exc
        except PermissionError as exc:
            raise RemediationFailure(f"permission denied: {exc}", target=target) from exc
        except OSError as exc:
            raise RemediationFailure(str(exc), target=target) from exc

    # Each action returns True when it acted (or the target was already in
    # the desired state) and False when the target has disappeared.

    def _kill(self, definition: IndicatorDefinition, target: str) -> bool:
        if not self.os.kill_process(int(target)):
            logger.debug("Process %s already exited", target)
        return True

    def _delete(self, definition: IndicatorDefinition, target: str) -> bool:
        if not self.os.delete_path(Path(target)):
            logger.debug("%s already absent", target)
        return True

    def _lock(self, definition: IndicatorDefinition, target: str) -> bool:
        try:
            if not self.os.set_immutable(Path(target)):
                logger.debug("%s already locked", target)
        except FileNotFoundError:
            return False
        return True

    def _restore_permissions(self, definition: IndicatorDefinition, target: str) -> bool:
        remediation = definition.remediation
        try:
            self.os.chmod(Path(target), remediation.mode, recursive=remediation.recursive)
        except FileNotFoundError:
            return False
        logger.debug("Set mode %s on %s", format_mode(remediation.mode), target)
        return True

    def _reset_preference(self, definition: IndicatorDefinition, target: str) -> bool:
        self.os.write_preference(Path(target), str(definition.arg("key")), definition.remediation.value)
        return True
