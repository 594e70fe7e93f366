"""Gate: pure evaluator plus the controller that records decisions and moves runs."""

from attestgate.gate.evaluator import Evaluation, RuleResult, evaluate, evaluate_rule
from attestgate.gate.controller import (
    AdvanceResult,
    cancel_run,
    create_run,
    get_run,
    on_evidence_appended,
    override,
    request_advance,
    retry_blocked_runs,
)

__all__ = [
    "AdvanceResult",
    "Evaluation",
    "RuleResult",
    "cancel_run",
    "create_run",
    "evaluate",
    "evaluate_rule",
    "get_run",
    "on_evidence_appended",
    "override",
    "request_advance",
    "retry_blocked_runs",
]
