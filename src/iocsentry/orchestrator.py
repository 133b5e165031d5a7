"""Run orchestrator: scopes x indicators -> evidence -> verdict -> fix -> report."""
from __future__ import annotations

import datetime as dt
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from .config import EngineSettings
from .core.interfaces import OSInterface, PolicyGuard, ReportSink
from .core.resilience import CollectorConfig, EvidenceCollector
from .errors import InvalidStateTransition
from .evaluator import evaluate
from .providers import build_providers
from .registry import IndicatorRegistry
from .remediation import RemediationExecutor
from .types import (
    IndicatorDefinition,
    OutcomeStatus,
    ReportEntry,
    RunReport,
    Scope,
    ScopeContext,
    Verdict,
    VerdictStatus,
)

logger = logging.getLogger(__name__)

Pair = Tuple[IndicatorDefinition, ScopeContext]

# Username standing for every user when the users root cannot be listed
ALL_USERS = "*"


class RunState(Enum):
    INIT = 0
    ENUMERATING_SCOPES = 1
    EVALUATING = 2
    COMPLETED = 3


class ScopeFilter:
    """Restrict a run to ``system``, ``user`` or ``user:<name>`` scopes."""

    def __init__(self, expression: Optional[str] = None) -> None:
        self.expression = (expression or "").strip()
        self.kind: Optional[Scope] = None
        self.username: Optional[str] = None
        if not self.expression or self.expression == "all":
            return
        if self.expression == "system":
            self.kind = Scope.SYSTEM_WIDE
        elif self.expression == "user":
            self.kind = Scope.PER_USER
        elif self.expression.startswith("user:") and self.expression[5:]:
            self.kind = Scope.PER_USER
            self.username = self.expression[5:]
        else:
            raise ValueError(f"invalid scope filter {expression!r}; use system, user or user:<name>")

    def includes(self, scope: ScopeContext) -> bool:
        if self.kind is not None and scope.kind is not self.kind:
            return False
        return self.username is None or scope.username == self.username


class RunOrchestrator:
    """Drive one run over every applicable (indicator, scope) pair.

    Only a registry load failure can stop a run, and that happens before the
    orchestrator exists. Everything after is isolated per pair.
    """

    def __init__(
        self,
        registry: IndicatorRegistry,
        os_interface: OSInterface,
        *,
        settings: Optional[EngineSettings] = None,
        policy_guard: Optional[PolicyGuard] = None,
        dry_run: bool = False,
        scope_filter: Optional[str] = None,
        system_info: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.registry = registry
        self.os = os_interface
        self.settings = settings or registry.settings
        self.dry_run = dry_run
        self.scope_filter = ScopeFilter(scope_filter)
        self.system_info = dict(system_info or {})
        self.collector = EvidenceCollector(
            build_providers(os_interface, self.settings.provider_timeout),
            CollectorConfig(
                provider_timeout=self.settings.provider_timeout,
                parallel=self.settings.parallel,
                max_workers=self.settings.max_workers,
                circuit_failure_threshold=self.settings.circuit_failure_threshold,
            ),
        )
        self.executor = RemediationExecutor(os_interface, policy_guard, dry_run=dry_run)
        self.state = RunState.INIT
        self._entries: List[ReportEntry] = []
        self._blind_spots: List[Tuple[ScopeContext, str]] = []

    def _transition(self, target: RunState) -> None:
        if target.value != self.state.value + 1:
            raise InvalidStateTransition(f"cannot go from {self.state.name} to {target.name}")
        logger.debug("Run state %s -> %s", self.state.name, target.name)
        self.state = target

    # -- scope enumeration -------------------------------------------------

    def discover_user_scopes(self) -> List[ScopeContext]:
        """Home directories that belong to real, personal accounts.

        A home that cannot be inspected, or a users root that cannot be
        listed, is remembered as a blind spot and reported as Unknown.
        """
        root = Path(self.settings.users_root)
        denylist = {name.lower() for name in self.settings.account_denylist}
        try:
            homes = self.os.list_directory(root)
        except OSError as exc:
            logger.error("Cannot list user homes under %s: %s", root, exc)
            self._blind_spots.append((ScopeContext.for_user(ALL_USERS, root), f"cannot list {root}: {exc}"))
            return []

        scopes = []
        for home in homes:
            name = home.name
            if name.startswith((".", "_")) or name.lower() in denylist:
                logger.debug("Skipping non-personal home %s", home)
                continue
            try:
                stat = self.os.stat_path(home)
                if stat is None or not stat.is_dir:
                    continue
                if not self.os.account_exists(name):
                    logger.info("Skipping %s: no account named %s", home, name)
                    continue
            except OSError as exc:
                logger.error("Cannot inspect home %s: %s", home, exc)
                self._blind_spots.append((ScopeContext.for_user(name, home), f"cannot inspect {home}: {exc}"))
                continue
            scopes.append(ScopeContext.for_user(name, home))
        return scopes

    def _wanted(self, scope: ScopeContext) -> bool:
        if scope.username == ALL_USERS:
            return self.scope_filter.kind is not Scope.SYSTEM_WIDE
        return self.scope_filter.includes(scope)

    def enumerate_scopes(self) -> List[ScopeContext]:
        self._transition(RunState.ENUMERATING_SCOPES)
        scopes = [ScopeContext.system()]
        if self.registry.by_scope(Scope.PER_USER) and self.scope_filter.kind is not Scope.SYSTEM_WIDE:
            scopes.extend(self.discover_user_scopes())
        self._blind_spots = [(scope, reason) for scope, reason in self._blind_spots if self._wanted(scope)]
        selected = [scope for scope in scopes if self.scope_filter.includes(scope)]
        logger.info("Evaluating %d scope(s): %s", len(selected), ", ".join(s.label for s in selected))
        return selected

    def plan(self, scopes: Sequence[ScopeContext]) -> List[Pair]:
        """System indicators on the system scope, then user indicators per user."""
        pairs: List[Pair] = []
        for scope in scopes:
            for definition in self.registry.by_scope(scope.kind):
                pairs.append((definition, scope))
        return pairs

    # -- evaluation --------------------------------------------------------

    def _process(self, definition: IndicatorDefinition, scope: ScopeContext, evidence) -> ReportEntry:
        verdict = evaluate(definition, scope, evidence)
        outcome = None
        if verdict.status is VerdictStatus.VIOLATED:
            logger.warning(
                "Indicator %s violated [%s]: %s", definition.id, scope.label, verdict.reason
            )
            if definition.remediation.is_actionable:
                outcome = self.executor.remediate(definition, scope, verdict)
                if outcome.status is OutcomeStatus.FAILED:
                    logger.error("Remediation failed for %s [%s]: %s", definition.id, scope.label, outcome.reason)
        elif verdict.status is VerdictStatus.UNKNOWN:
            logger.warning("Indicator %s inconclusive [%s]: %s", definition.id, scope.label, verdict.reason)
        return ReportEntry(
            indicator_id=definition.id,
            scope=scope,
            verdict=verdict,
            outcome=outcome,
            severity=definition.severity,
            description=definition.description,
        )

    def run(self, sinks: Iterable[ReportSink] = ()) -> RunReport:
        """Execute the run once and hand the report to every sink."""
        started = dt.datetime.now(dt.timezone.utc)
        scopes = self.enumerate_scopes()
        pairs = self.plan(scopes)

        self._transition(RunState.EVALUATING)
        evidences = self.collector.collect_all(pairs)
        for (definition, scope), evidence in zip(pairs, evidences):
            try:
                entry = self._process(definition, scope, evidence)
            except Exception as exc:  # noqa: BLE001 - keep evaluating the rest
                logger.exception("Unexpected error processing %s [%s]", definition.id, scope.label)
                entry = ReportEntry(
                    indicator_id=definition.id,
                    scope=scope,
                    verdict=Verdict.unknown(f"{type(exc).__name__}: {exc}"),
                    severity=definition.severity,
                    description=definition.description,
                )
            self._entries.append(entry)
        for scope, reason in self._blind_spots:
            for definition in self.registry.by_scope(Scope.PER_USER):
                logger.warning("Indicator %s inconclusive [%s]: %s", definition.id, scope.label, reason)
                self._entries.append(
                    ReportEntry(
                        indicator_id=definition.id,
                        scope=scope,
                        verdict=Verdict.unknown(reason),
                        severity=definition.severity,
                        description=definition.description,
                    )
                )

        self._transition(RunState.COMPLETED)
        report = RunReport(
            entries=tuple(self._entries),
            started_at=started,
            finished_at=dt.datetime.now(dt.timezone.utc),
            dry_run=self.dry_run,
            system_info=self.system_info,
        )
        for sink in sinks:
            try:
                sink.submit(report)
            except Exception:  # noqa: BLE001 - a broken sink must not hide the report
                logger.exception("Report sink %s failed", type(sink).__name__)
        return report
