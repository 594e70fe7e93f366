"""SQLAlchemy models."""

from attestgate.models.decision import Decision
from attestgate.models.evidence_quarantine import EvidenceQuarantine
from attestgate.models.evidence_record import EvidenceRecord
from attestgate.models.pipeline_run import PipelineRun
from attestgate.models.policy_version import PolicyVersion

__all__ = [
    "Decision",
    "EvidenceQuarantine",
    "EvidenceRecord",
    "PipelineRun",
    "PolicyVersion",
]
