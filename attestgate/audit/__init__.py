"""Audit Log: durable, tamper-evident sequence of gate decisions."""

from attestgate.audit.log import (
    ChainVerification,
    decision_to_dict,
    export_decisions,
    get_decision,
    history,
    record_decision,
    verify_chain,
)

__all__ = [
    "ChainVerification",
    "decision_to_dict",
    "export_decisions",
    "get_decision",
    "history",
    "record_decision",
    "verify_chain",
]
