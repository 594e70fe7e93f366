"""Evidence Store: append-only attestations keyed by pipeline run."""

from attestgate.evidence.notifier import notifier
from attestgate.evidence.repository import (
    get_evidence,
    load_snapshot,
    query_evidence,
)
from attestgate.evidence.snapshot import EvidenceItem, EvidenceSnapshot
from attestgate.evidence.store import (
    append_evidence,
    ingest_evidence,
    parse_submission,
    quarantine_submission,
)

__all__ = [
    "EvidenceItem",
    "EvidenceSnapshot",
    "append_evidence",
    "get_evidence",
    "ingest_evidence",
    "load_snapshot",
    "notifier",
    "parse_submission",
    "quarantine_submission",
    "query_evidence",
]
