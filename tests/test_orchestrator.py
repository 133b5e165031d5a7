"""End-to-end tests for the run orchestrator against an in-memory host."""
from __future__ import annotations

from pathlib import Path
from typing import List

import pytest

from iocsentry.config import default_config_path
from iocsentry.errors import InvalidStateTransition
from iocsentry.orchestrator import RunOrchestrator, RunState, ScopeFilter
from iocsentry.registry import IndicatorRegistry
from iocsentry.types import (
    EXIT_OK,
    EXIT_UNKNOWN,
    OutcomeStatus,
    RemediationKind,
    RunReport,
    ScopeContext,
    VerdictStatus,
)
from iocsentry.utils.commands import LOG_BINARY, CommandResult

from conftest import AUDIO_FORMATS, FakeHost, build_registry, log_events, log_record, pref_record, proc_record, tmp_record


def _statuses(report: RunReport) -> dict:
    return {(e.indicator_id, e.scope.label): e.verdict.status for e in report}


class RecordingSink:
    def __init__(self) -> None:
        self.reports: List[RunReport] = []

    def submit(self, report: RunReport) -> None:
        self.reports.append(report)


class BrokenSink:
    def submit(self, report: RunReport) -> None:
        raise OSError("disk full")


class TestProcessScenario:
    def test_kill_then_clean(self, host: FakeHost) -> None:
        registry = build_registry([proc_record()])
        host.mock_process(4242, "/private/tmp/p")

        first = RunOrchestrator(registry, host).run()

        entry = first.entries[0]
        assert entry.verdict.status is VerdictStatus.VIOLATED
        assert entry.verdict.observed == [4242]
        assert entry.outcome.status is OutcomeStatus.APPLIED
        assert entry.outcome.action is RemediationKind.KILL
        assert host.actions == [("kill", 4242)]
        assert first.exit_code() == EXIT_OK

        second = RunOrchestrator(registry, host).run()
        assert second.entries[0].verdict.status is VerdictStatus.CLEAN
        assert second.entries[0].outcome is None


class TestPreferenceScenario:
    def test_reset_then_clean(self, host: FakeHost) -> None:
        registry = build_registry([pref_record()])
        home = host.add_home("alice")
        host.set_preferences(home, {"AllowedCPC": "0x7"})

        first = RunOrchestrator(registry, host).run()

        entry = first.entries[0]
        assert entry.scope.label == "user:alice"
        assert entry.verdict.status is VerdictStatus.VIOLATED
        assert entry.outcome.status is OutcomeStatus.APPLIED
        assert host.preferences(home)["AllowedCPC"] == "0x3"

        second = RunOrchestrator(registry, host).run()
        assert second.entries[0].verdict.status is VerdictStatus.CLEAN

    def test_missing_key_is_written(self, host: FakeHost) -> None:
        registry = build_registry([pref_record()])
        home = host.add_home("alice")

        report = RunOrchestrator(registry, host).run()

        assert report.entries[0].verdict.status is VerdictStatus.VIOLATED
        assert report.entries[0].outcome.status is OutcomeStatus.APPLIED
        assert host.preferences(home) == {"AllowedCPC": "0x3"}


class TestFaultIsolation:
    def test_failing_provider_does_not_stop_others(self, host: FakeHost) -> None:
        # The log command is not mocked, so every log query fails
        registry = build_registry([proc_record(), log_record(), tmp_record(), pref_record()])
        home = host.add_home("alice")
        host.set_preferences(home, {"AllowedCPC": "0x3"})
        host.mock_file(Path("/tmp/GmaNi4v50ekNZSI"), b"payload")

        report = RunOrchestrator(registry, host).run()

        assert len(report) == 4
        assert _statuses(report) == {
            ("proc-1", "system"): VerdictStatus.CLEAN,
            ("log-dscl", "system"): VerdictStatus.UNKNOWN,
            ("tmp-1", "system"): VerdictStatus.VIOLATED,
            ("pref-1", "user:alice"): VerdictStatus.CLEAN,
        }
        assert report.entries[2].outcome.status is OutcomeStatus.APPLIED
        assert report.exit_code() == EXIT_UNKNOWN

    def test_process_table_error_is_unknown(self, host: FakeHost) -> None:
        host.mock_failure("processes", None, PermissionError("denied"))
        registry = build_registry([proc_record(), tmp_record()])

        report = RunOrchestrator(registry, host).run()

        assert report.entries[0].verdict.status is VerdictStatus.UNKNOWN
        assert "PermissionError" in report.entries[0].verdict.reason
        assert report.entries[0].outcome is None
        assert report.entries[1].verdict.status is VerdictStatus.CLEAN

    def test_circuit_opens_when_log_subsystem_is_down(self, host: FakeHost) -> None:
        host.mock_command_response(
            [LOG_BINARY, "show"],
            CommandResult(stdout="", stderr="Command not found: /usr/bin/log", returncode=-1),
        )
        records = [log_record(id=f"log-{n}") for n in range(4)]
        registry = build_registry(records, circuit_failure_threshold=3)

        report = RunOrchestrator(registry, host).run()

        assert all(e.verdict.status is VerdictStatus.UNKNOWN for e in report)
        assert "repeated outages" in report.entries[3].verdict.reason
        assert "repeated outages" not in report.entries[0].verdict.reason

    def test_bad_predicates_do_not_disable_other_log_indicators(self, host: FakeHost) -> None:
        bad = [log_record(id=f"log-{n}", args={"predicate": f"broken {n}"}) for n in range(3)]
        good = log_record(id="log-dscl")
        host.mock_command_response(
            [LOG_BINARY, "show", "--predicate", 'eventMessage contains "dscl"'], log_events("dscl . -create")
        )
        host.mock_command_response(
            [LOG_BINARY, "show"], CommandResult(stdout="", stderr="log: Bad predicate", returncode=64)
        )
        registry = build_registry([*bad, good], circuit_failure_threshold=3)

        report = RunOrchestrator(registry, host).run()

        assert [e.verdict.status for e in report][:3] == [VerdictStatus.UNKNOWN] * 3
        assert report.entries[3].verdict.status is VerdictStatus.VIOLATED

    def test_unreadable_files_do_not_mask_a_readable_one(self, host: FakeHost) -> None:
        records = [
            {
                "id": f"content-{n}",
                "scope": "system",
                "provider": "file_content_pattern",
                "args": {"path": f"/tmp/drop-{n}", "pattern": "evil"},
                "expect": "must_not_exist",
            }
            for n in range(4)
        ]
        for n in range(3):
            host.mock_file(Path(f"/tmp/drop-{n}"), b"evil", readable=False)
        host.mock_file(Path("/tmp/drop-3"), b"some evil payload")
        registry = build_registry(records, circuit_failure_threshold=3)

        report = RunOrchestrator(registry, host).run()

        assert [e.verdict.status for e in report] == [VerdictStatus.UNKNOWN] * 3 + [VerdictStatus.VIOLATED]
        assert "outages" not in report.entries[3].verdict.reason

    def test_guard_error_becomes_unknown(self, host: FakeHost) -> None:
        class ExplodingGuard:
            def allows(self, action, target):
                raise RuntimeError("guard crashed")

            def reason(self, action, target):
                return ""

        host.mock_process(4242, "/private/tmp/p")
        host.mock_file(Path("/tmp/GmaNi4v50ekNZSI"))
        registry = build_registry([proc_record(), tmp_record()])

        report = RunOrchestrator(registry, host, policy_guard=ExplodingGuard()).run()

        assert [e.verdict.status for e in report] == [VerdictStatus.UNKNOWN, VerdictStatus.UNKNOWN]
        assert "guard crashed" in report.entries[0].verdict.reason
        assert host.actions == []


class TestDryRun:
    def test_reports_would_apply_without_mutation(self, host: FakeHost) -> None:
        registry = build_registry([proc_record(), tmp_record(), pref_record()])
        home = host.add_home("alice")
        host.set_preferences(home, {"AllowedCPC": "0x7"})
        host.mock_process(4242, "/private/tmp/p")
        host.mock_file(Path("/tmp/GmaNi4v50ekNZSI"), b"payload")

        report = RunOrchestrator(registry, host, dry_run=True).run()

        assert report.dry_run
        assert [e.outcome.status for e in report] == [OutcomeStatus.WOULD_APPLY] * 3
        assert host.actions == []
        assert host.preferences(home)["AllowedCPC"] == "0x7"
        assert report.exit_code() == EXIT_OK

    def test_verdicts_match_real_run(self, host: FakeHost) -> None:
        registry = build_registry([proc_record(), tmp_record()])
        host.mock_process(4242, "/private/tmp/p")

        dry = RunOrchestrator(registry, host, dry_run=True).run()
        real = RunOrchestrator(registry, host).run()

        assert [e.verdict for e in dry] == [e.verdict for e in real]


class TestScopeDiscovery:
    def test_skips_non_personal_homes(self, host: FakeHost) -> None:
        host.add_home("alice")
        host.add_home("Shared")
        host.add_home(".localized")
        host.add_home("_mbsetupuser")
        host.add_home("ghost", account=False)
        host.add_home("notes.txt", is_dir=False)
        orchestrator = RunOrchestrator(build_registry([pref_record()]), host)

        assert [s.label for s in orchestrator.enumerate_scopes()] == ["system", "user:alice"]

    def test_denylist_is_case_insensitive(self, host: FakeHost) -> None:
        host.add_home("guest")
        host.add_home("bob")
        orchestrator = RunOrchestrator(build_registry([pref_record()]), host)
        assert [s.username for s in orchestrator.discover_user_scopes()] == ["bob"]

    def test_custom_users_root(self) -> None:
        host = FakeHost(users_root=Path("/Volumes/Data/Users"))
        host.add_home("carol")
        registry = build_registry([pref_record()], users_root="/Volumes/Data/Users")

        scopes = RunOrchestrator(registry, host).enumerate_scopes()

        assert scopes[1].home == Path("/Volumes/Data/Users/carol")

    def test_no_user_indicators_skips_discovery(self, host: FakeHost) -> None:
        host.add_home("alice")
        orchestrator = RunOrchestrator(build_registry([tmp_record()]), host)
        assert [s.label for s in orchestrator.enumerate_scopes()] == ["system"]

    def test_plan_order(self, host: FakeHost) -> None:
        host.add_home("alice")
        host.add_home("bob")
        registry = build_registry([pref_record(), tmp_record(), pref_record(id="pref-2"), proc_record()])
        orchestrator = RunOrchestrator(registry, host)

        pairs = orchestrator.plan(orchestrator.enumerate_scopes())

        assert [(d.id, s.label) for d, s in pairs] == [
            ("tmp-1", "system"),
            ("proc-1", "system"),
            ("pref-1", "user:alice"),
            ("pref-2", "user:alice"),
            ("pref-1", "user:bob"),
            ("pref-2", "user:bob"),
        ]


class TestUnreadableHomes:
    def test_uninspectable_home_does_not_hide_the_others(self, host: FakeHost) -> None:
        host.add_home("alice")
        host.add_home("bob")
        host.mock_failure("stat", Path("/Users/bob"), PermissionError("denied"))

        report = RunOrchestrator(build_registry([pref_record()]), host).run()

        assert _statuses(report) == {
            ("pref-1", "user:alice"): VerdictStatus.VIOLATED,
            ("pref-1", "user:bob"): VerdictStatus.UNKNOWN,
        }
        assert report.entries[0].outcome.status is OutcomeStatus.APPLIED
        assert report.entries[1].verdict.reason == "cannot inspect /Users/bob: denied"
        assert report.exit_code() == EXIT_UNKNOWN

    def test_account_lookup_failure_is_unknown(self, host: FakeHost) -> None:
        host.set_preferences(host.add_home("alice"), {"AllowedCPC": "0x3"})
        host.add_home("bob")
        host.mock_failure("account", "bob", OSError("directory service down"))

        report = RunOrchestrator(build_registry([pref_record()]), host).run()

        assert _statuses(report) == {
            ("pref-1", "user:alice"): VerdictStatus.CLEAN,
            ("pref-1", "user:bob"): VerdictStatus.UNKNOWN,
        }

    def test_unlistable_users_root_is_unknown(self, host: FakeHost) -> None:
        host.add_home("alice")
        host.mock_failure("list", Path("/Users"), PermissionError("denied"))
        registry = build_registry([tmp_record(), pref_record(), pref_record(id="pref-2")])

        report = RunOrchestrator(registry, host).run()

        assert _statuses(report) == {
            ("tmp-1", "system"): VerdictStatus.CLEAN,
            ("pref-1", "user:*"): VerdictStatus.UNKNOWN,
            ("pref-2", "user:*"): VerdictStatus.UNKNOWN,
        }
        assert report.entries[1].verdict.reason == "cannot list /Users: denied"
        assert report.exit_code() == EXIT_UNKNOWN

    def test_unlistable_users_root_reported_for_named_user(self, host: FakeHost) -> None:
        host.mock_failure("list", Path("/Users"), PermissionError("denied"))

        report = RunOrchestrator(build_registry([pref_record()]), host, scope_filter="user:alice").run()

        assert [e.scope.label for e in report] == ["user:*"]
        assert report.exit_code() == EXIT_UNKNOWN

    def test_system_filter_never_lists_homes(self, host: FakeHost) -> None:
        host.mock_failure("list", Path("/Users"), PermissionError("denied"))
        registry = build_registry([tmp_record(), pref_record()])

        report = RunOrchestrator(registry, host, scope_filter="system").run()

        assert [e.scope.label for e in report] == ["system"]
        assert report.exit_code() == EXIT_OK

    def test_filtered_out_home_failure_is_not_reported(self, host: FakeHost) -> None:
        host.add_home("alice")
        host.add_home("bob")
        host.mock_failure("stat", Path("/Users/bob"), PermissionError("denied"))

        report = RunOrchestrator(build_registry([pref_record()]), host, scope_filter="user:alice").run()

        assert [e.scope.label for e in report] == ["user:alice"]

    def test_missing_users_root_is_not_an_error(self) -> None:
        host = FakeHost(users_root=Path("/Volumes/Data/Users"))
        host.add_home("carol")

        report = RunOrchestrator(build_registry([pref_record()]), host).run()

        assert len(report) == 0
        assert report.exit_code() == EXIT_OK


class TestScopeFilter:
    @pytest.mark.parametrize(
        "expression, labels",
        [
            (None, ["system", "user:alice", "user:bob"]),
            ("all", ["system", "user:alice", "user:bob"]),
            ("system", ["system"]),
            ("user", ["user:alice", "user:bob"]),
            ("user:bob", ["user:bob"]),
            ("user:nobody", []),
        ],
    )
    def test_filtering(self, host: FakeHost, expression, labels) -> None:
        host.add_home("alice")
        host.add_home("bob")
        orchestrator = RunOrchestrator(build_registry([pref_record()]), host, scope_filter=expression)
        assert [s.label for s in orchestrator.enumerate_scopes()] == labels

    @pytest.mark.parametrize("expression", ["users", "user:", "root"])
    def test_invalid_expression(self, expression: str) -> None:
        with pytest.raises(ValueError):
            ScopeFilter(expression)

    def test_includes(self) -> None:
        alice = ScopeContext.for_user("alice", Path("/Users/alice"))
        assert ScopeFilter("user:alice").includes(alice)
        assert not ScopeFilter("system").includes(alice)
        assert ScopeFilter().includes(ScopeContext.system())


class TestLifecycle:
    def test_run_once(self, host: FakeHost) -> None:
        orchestrator = RunOrchestrator(build_registry([tmp_record()]), host)
        assert orchestrator.state is RunState.INIT
        orchestrator.run()
        assert orchestrator.state is RunState.COMPLETED
        with pytest.raises(InvalidStateTransition):
            orchestrator.run()

    def test_sinks_receive_report(self, host: FakeHost) -> None:
        sink = RecordingSink()
        report = RunOrchestrator(build_registry([tmp_record()]), host).run(sinks=[BrokenSink(), sink])
        assert sink.reports == [report]

    def test_report_metadata(self, host: FakeHost) -> None:
        orchestrator = RunOrchestrator(
            build_registry([tmp_record()]), host, system_info={"os": "macOS 14.6"}
        )
        report = orchestrator.run()
        assert report.system_info == {"os": "macOS 14.6"}
        assert report.started_at <= report.finished_at
        assert report.started_at.tzinfo is not None

    def test_parallel_collection_keeps_order(self, host: FakeHost) -> None:
        for name in ("alice", "bob", "carol"):
            host.set_preferences(host.add_home(name), {"AllowedCPC": "0x3"})
        registry = build_registry(
            [tmp_record(), pref_record(), pref_record(id="pref-2")], parallel=True, max_workers=3
        )

        report = RunOrchestrator(registry, host).run()

        assert [(e.indicator_id, e.scope.label) for e in report] == [
            ("tmp-1", "system"),
            ("pref-1", "user:alice"),
            ("pref-2", "user:alice"),
            ("pref-1", "user:bob"),
            ("pref-2", "user:bob"),
            ("pref-1", "user:carol"),
            ("pref-2", "user:carol"),
        ]


class TestBundledIndicators:
    """The shipped CVE-2024-44133 indicator set on an infected host."""

    @pytest.fixture
    def infected(self, host: FakeHost) -> FakeHost:
        host.mock_process(4242, "/private/tmp/p")
        host.mock_file(Path("/tmp/GmaNi4v50ekNZSI"), b"payload")
        host.mock_file(Path("/usr/bin/id"), mode=0o777)
        host.mock_file(Path("/usr/bin/sw_vers"), mode=0o755)
        host.mock_command_response(["/usr/bin/log", "show"], log_events())
        home = host.add_home("alice")
        host.set_preferences(home, {"AllowedCPC": "0x7", "SupportedAudioFormat": ["ac3IsDecodable:YES"]})
        safari = home / "Library" / "Safari"
        host.mock_directory(safari, [safari / "History.db"])
        host.mock_file(safari / "History.db")
        return host

    def test_first_run_remediates_everything(self, infected: FakeHost) -> None:
        registry = IndicatorRegistry.load(default_config_path())

        report = RunOrchestrator(registry, infected).run()

        violated = {e.indicator_id for e in report if e.verdict.is_violated}
        assert violated == {
            "proc-1",
            "tmp-1",
            "bin-id-mode",
            "pref-1",
            "pref-2",
            "pref-3",
            "mediatoolbox-mode",
            "mediatoolbox-lock",
            "safari-mode",
            "safari-lock",
        }
        assert all(e.outcome.status is OutcomeStatus.APPLIED for e in report if e.verdict.is_violated)
        assert report.exit_code() == EXIT_OK

        home = Path("/Users/alice")
        prefs = infected.preferences(home)
        assert prefs["AllowedCPC"] == "0x3"
        assert prefs["MediaValidation"] == "NO"
        assert prefs["SupportedAudioFormat"] == AUDIO_FORMATS
        plist = infected.stat_path(infected.media_plist(home))
        assert plist.mode == 0o600 and plist.immutable
        assert infected.stat_path(home / "Library" / "Safari" / "History.db").mode == 0o600

    def test_second_run_is_clean(self, infected: FakeHost) -> None:
        registry = IndicatorRegistry.load(default_config_path())
        RunOrchestrator(registry, infected).run()
        infected.actions.clear()

        report = RunOrchestrator(registry, infected).run()

        assert all(e.verdict.status is VerdictStatus.CLEAN for e in report)
        assert infected.actions == []
