"""Shared vocabulary: evidence kinds, outcomes, run statuses, decision outcomes."""

from __future__ import annotations

from typing import Literal

EvidenceKind = Literal[
    "secret_scan",
    "sast",
    "dast",
    "dependency_scan",
    "container_scan",
    "signature",
    "sbom",
    "approval",
    "branch_protection_check",
]
EVIDENCE_KINDS: frozenset[str] = frozenset({
    "secret_scan",
    "sast",
    "dast",
    "dependency_scan",
    "container_scan",
    "signature",
    "sbom",
    "approval",
    "branch_protection_check",
})

EvidenceOutcome = Literal["pass", "fail", "unknown"]

RunStatus = Literal["pending", "blocked", "admitted", "rejected", "cancelled"]

DecisionOutcome = Literal["admit", "deny"]
DecisionType = Literal["evaluation", "override"]

# decided_by for decisions made by the evaluator rather than a human
SYSTEM_ACTOR = "system"

# Per-rule result reasons. Only FAILED makes a Deny terminal (Rejected).
REASON_SATISFIED = "satisfied"
REASON_WAIVED = "waived"
REASON_MISSING = "missing"
REASON_STALE = "stale"
REASON_INSUFFICIENT = "insufficient"
REASON_UNKNOWN = "unknown"
REASON_FAILED = "failed"
REASON_NO_POLICY = "no_policy"
