"""Evaluator: pure, deterministic admission decision for one run/stage.

Given the same rules, evidence snapshot and as-of cutoff, evaluate() always
returns the same Evaluation. It reads nothing but its arguments and writes
nothing; the gate controller owns persistence.

Fail-closed throughout: a rule is satisfied only when qualifying evidence
exists and its predicate holds. Missing, stale or indeterminate evidence is
never an implicit pass.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from attestgate.constants import (
    REASON_FAILED,
    REASON_INSUFFICIENT,
    REASON_MISSING,
    REASON_NO_POLICY,
    REASON_SATISFIED,
    REASON_STALE,
    REASON_UNKNOWN,
    REASON_WAIVED,
    DecisionOutcome,
)
from attestgate.evidence.snapshot import EvidenceItem, EvidenceSnapshot
from attestgate.policy.model import PolicyRule, Threshold

# Predicate verdicts for a single evidence item
_PASS = "pass"
_FAIL = "fail"
_UNKNOWN = "unknown"


@dataclass(frozen=True)
class RuleResult:
    """Outcome of one rule: whether it is satisfied, why, and which evidence was used."""

    rule_id: str
    kind: str
    satisfied: bool
    reason: str
    detail: str = ""
    evidence_used: tuple[int, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "kind": self.kind,
            "satisfied": self.satisfied,
            "reason": self.reason,
            "detail": self.detail,
            "evidence_used": list(self.evidence_used),
        }


@dataclass(frozen=True)
class Evaluation:
    """Admission decision for a run/stage before it is recorded."""

    run_id: str
    stage: str
    outcome: DecisionOutcome
    as_of: datetime
    high_water: int
    results: tuple[RuleResult, ...]
    policy_version: str | None = None
    policy_checksum: str | None = None
    waived_rules: tuple[str, ...] = field(default=())

    @property
    def admitted(self) -> bool:
        return self.outcome == "admit"

    @property
    def unsatisfied(self) -> tuple[RuleResult, ...]:
        return tuple(r for r in self.results if not r.satisfied)

    @property
    def resulting_status(self) -> str:
        """admitted, rejected (a predicate actively failed) or blocked (not enough evidence)."""
        if self.admitted:
            return "admitted"
        if any(r.reason == REASON_FAILED for r in self.results):
            return "rejected"
        return "blocked"


def _lookup(payload: dict[str, Any] | None, path: str) -> Any:
    """Resolve a dotted path (e.g. findings.critical) in a payload; None when absent."""
    node: Any = payload
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _check_threshold(item: EvidenceItem, threshold: Threshold) -> tuple[str, str]:
    value = _lookup(item.payload, threshold.path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return _UNKNOWN, f"seq={item.seq}: metric {threshold.path} absent or not numeric"
    # Exact comparison; bounds are inclusive
    if threshold.max is not None and value > threshold.max:
        return _FAIL, f"seq={item.seq}: {threshold.path}={value:g} exceeds max {threshold.max:g}"
    if threshold.min is not None and value < threshold.min:
        return _FAIL, f"seq={item.seq}: {threshold.path}={value:g} below min {threshold.min:g}"
    return _PASS, ""


def check_predicate(rule: PolicyRule, item: EvidenceItem) -> tuple[str, str]:
    """Apply a rule's predicate to one evidence item. Returns (verdict, detail)."""
    if item.outcome == "unknown":
        return _UNKNOWN, f"seq={item.seq}: outcome unknown"
    if item.outcome != rule.outcome:
        return _FAIL, f"seq={item.seq}: outcome {item.outcome}, required {rule.outcome}"
    verdict, details = _PASS, []
    for threshold in rule.thresholds:
        v, detail = _check_threshold(item, threshold)
        if v == _FAIL:
            verdict = _FAIL
        elif v == _UNKNOWN and verdict != _FAIL:
            verdict = _UNKNOWN
        if detail:
            details.append(detail)
    return verdict, "; ".join(details)


def _is_fresh(rule: PolicyRule, item: EvidenceItem, as_of: datetime) -> bool:
    if rule.freshness_seconds is None:
        return True
    return as_of - item.timestamp <= timedelta(seconds=rule.freshness_seconds)


def _result(rule: PolicyRule, satisfied: bool, reason: str, detail: str, used: Iterable[int]):
    return RuleResult(
        rule_id=rule.rule_id,
        kind=rule.kind,
        satisfied=satisfied,
        reason=reason,
        detail=detail,
        evidence_used=tuple(used),
    )


def _combine(rule: PolicyRule, verdicts: list[tuple[EvidenceItem, str, str]]) -> RuleResult:
    used = [item.seq for item, _, _ in verdicts]
    details = "; ".join(d for _, _, d in verdicts if d)
    if any(v == _FAIL for _, v, _ in verdicts):
        return _result(rule, False, REASON_FAILED, details, used)
    if any(v == _UNKNOWN for _, v, _ in verdicts):
        return _result(rule, False, REASON_UNKNOWN, details, used)
    return _result(rule, True, REASON_SATISFIED, details, used)


def evaluate_rule(
    rule: PolicyRule,
    items: Iterable[EvidenceItem],
    *,
    run_id: str,
    commit_sha: str,
    as_of: datetime,
    high_water: int,
) -> RuleResult:
    """Evaluate one rule against the run's evidence as of a cutoff."""
    candidates = sorted(
        (
            i
            for i in items
            if i.run_id == run_id
            and i.kind == rule.kind
            and i.seq <= high_water
            and i.timestamp <= as_of
        ),
        key=lambda i: i.seq,
        reverse=True,
    )
    other_commits = sum(1 for i in candidates if i.commit_sha != commit_sha)
    candidates = [i for i in candidates if i.commit_sha == commit_sha]
    if not candidates:
        detail = f"no {rule.kind} evidence"
        if other_commits:
            detail += f" for commit {commit_sha[:12]} ({other_commits} for other commits ignored)"
        return _result(rule, False, REASON_MISSING, detail, ())

    fresh = [i for i in candidates if _is_fresh(rule, i, as_of)]
    if not fresh:
        age = as_of - candidates[0].timestamp
        return _result(
            rule,
            False,
            REASON_STALE,
            f"newest {rule.kind} evidence (seq={candidates[0].seq}) is "
            f"{int(age.total_seconds())}s old; window {rule.freshness_seconds}s",
            (),
        )

    if rule.min_reviewers > 1:
        latest_per_source: dict[str, EvidenceItem] = {}
        for item in fresh:
            latest_per_source.setdefault(item.source_identity, item)
        verdicts = [(i, *check_predicate(rule, i)) for i in latest_per_source.values()]
        passing = [i.seq for i, v, _ in verdicts if v == _PASS]
        if len(passing) >= rule.min_reviewers:
            return _result(
                rule,
                True,
                REASON_SATISFIED,
                f"{len(passing)} of {rule.min_reviewers} required reviewers",
                passing,
            )
        if any(v == _FAIL for _, v, _ in verdicts):
            return _combine(rule, verdicts)
        return _result(
            rule,
            False,
            REASON_INSUFFICIENT,
            f"{len(passing)} of {rule.min_reviewers} required reviewers",
            passing,
        )

    if rule.last_n is not None:
        window = fresh[: rule.last_n]
        verdicts = [(i, *check_predicate(rule, i)) for i in window]
        combined = _combine(rule, verdicts)
        if len(window) < rule.last_n and combined.reason != REASON_FAILED:
            return _result(
                rule,
                False,
                REASON_INSUFFICIENT,
                f"{len(window)} of last {rule.last_n} required {rule.kind} records",
                combined.evidence_used,
            )
        return combined

    latest = fresh[0]
    return _combine(rule, [(latest, *check_predicate(rule, latest))])


def evaluate(
    *,
    run_id: str,
    commit_sha: str,
    stage: str,
    rules: Iterable[PolicyRule],
    snapshot: EvidenceSnapshot,
    as_of: datetime,
    waived_rules: Iterable[str] = (),
    policy_version: str | None = None,
    policy_checksum: str | None = None,
    checkpoint: Callable[[], None] | None = None,
) -> Evaluation:
    """Evaluate every rule for run/stage against one evidence snapshot.

    Admit iff every rule is satisfied or waived. checkpoint, when given, is
    called before each rule so the caller can enforce a deadline.
    """
    if as_of.tzinfo is None:
        raise ValueError("as_of must be timezone-aware")
    waived = frozenset(waived_rules)
    results: list[RuleResult] = []
    for rule in rules:
        if checkpoint is not None:
            checkpoint()
        if rule.rule_id in waived:
            results.append(_result(rule, True, REASON_WAIVED, "waived by override", ()))
            continue
        results.append(
            evaluate_rule(
                rule,
                snapshot.items,
                run_id=run_id,
                commit_sha=commit_sha,
                as_of=as_of,
                high_water=snapshot.high_water,
            )
        )
    if not results:
        # An empty rule set never admits
        return no_policy_evaluation(
            run_id=run_id,
            stage=stage,
            as_of=as_of,
            high_water=snapshot.high_water,
            detail="no rules supplied",
        )
    outcome = "admit" if all(r.satisfied for r in results) else "deny"
    return Evaluation(
        run_id=run_id,
        stage=stage,
        outcome=outcome,
        as_of=as_of,
        high_water=snapshot.high_water,
        results=tuple(results),
        policy_version=policy_version,
        policy_checksum=policy_checksum,
        waived_rules=tuple(sorted(waived)),
    )


def no_policy_evaluation(
    *,
    run_id: str,
    stage: str,
    as_of: datetime,
    high_water: int,
    detail: str,
    policy_version: str | None = None,
    policy_checksum: str | None = None,
) -> Evaluation:
    """Deny for a stage with no applicable policy (fail-closed, status blocked)."""
    return Evaluation(
        run_id=run_id,
        stage=stage,
        outcome="deny",
        as_of=as_of,
        high_water=high_water,
        results=(
            RuleResult(
                rule_id=f"{stage}/*",
                kind="*",
                satisfied=False,
                reason=REASON_NO_POLICY,
                detail=detail,
            ),
        ),
        policy_version=policy_version,
        policy_checksum=policy_checksum,
    )
