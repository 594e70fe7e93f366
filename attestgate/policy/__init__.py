"""Policy Model: versioned, immutable policy snapshots composed from YAML files."""

from attestgate.policy.loader import (
    compute_policy_checksum,
    load_policy_document,
    load_policy_snapshot,
)
from attestgate.policy.model import EnvironmentPolicy, PolicyRule, PolicySnapshot, Threshold
from attestgate.policy.registry import get_active_policy, publish_policy
from attestgate.policy.validator import PolicyValidationError, validate_policy_document

__all__ = [
    "EnvironmentPolicy",
    "PolicyRule",
    "PolicySnapshot",
    "PolicyValidationError",
    "Threshold",
    "compute_policy_checksum",
    "get_active_policy",
    "load_policy_document",
    "load_policy_snapshot",
    "publish_policy",
    "validate_policy_document",
]
