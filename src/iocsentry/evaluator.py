"""Rule evaluator: evidence + expectation -> verdict.

Pure and deterministic; never touches the host.
"""
from __future__ import annotations

from .types import Evidence, ExpectationKind, IndicatorDefinition, ScopeContext, Verdict
from .utils.parsers import missing_values, values_equal


def evaluate(definition: IndicatorDefinition, scope: ScopeContext, evidence: Evidence) -> Verdict:
    """Judge ``evidence`` against the indicator's expectation.

    Inconclusive evidence is always Unknown, so no remediation is ever taken
    and no cleanliness is ever claimed on a failed query.
    """
    if evidence.query_failed:
        return Verdict.unknown(evidence.reason or "evidence query failed")

    expectation = definition.expectation
    targets = evidence.targets

    if expectation.kind is ExpectationKind.MUST_NOT_EXIST:
        if evidence.present:
            return Verdict.violated(evidence.value, "present but must not exist", targets)
        return Verdict.clean()

    if expectation.kind is ExpectationKind.MUST_EQUAL:
        if not evidence.present:
            # An undefined value is not the expected value
            return Verdict.violated(None, f"absent, expected {expectation.value!r}", targets)
        if values_equal(evidence.value, expectation.value):
            return Verdict.clean(evidence.value)
        return Verdict.violated(
            evidence.value, f"observed {evidence.value!r}, expected {expectation.value!r}", targets
        )

    # MUST_CONTAIN_ALL
    if not evidence.present:
        return Verdict.violated(None, f"absent, expected {list(expectation.values)!r}", targets)
    missing = missing_values(evidence.value, expectation.values)
    if missing:
        return Verdict.violated(evidence.value, f"missing {missing!r}", targets)
    return Verdict.clean(evidence.value)
