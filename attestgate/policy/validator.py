"""Policy document validation.

Validates the base layer and every environment layer: required fields, known
evidence kinds, stage references, threshold bounds and rule option conflicts.
Raises PolicyValidationError with a clear message on the first problem found.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from attestgate.constants import EVIDENCE_KINDS

logger = logging.getLogger(__name__)

# Environment and stage names: alphanumeric, underscore, hyphen. Environment names are file stems.
NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")

_RULE_KEYS = frozenset({
    "stage",
    "kind",
    "outcome",
    "thresholds",
    "min_reviewers",
    "last_n",
    "freshness_seconds",
    "description",
})


class PolicyValidationError(Exception):
    """Raised when a policy document fails validation."""

    pass


def validate_policy_document(document: Any) -> None:
    """Validate a policy document: {version, base: {rules}, environments: {name: {stages, rules}}}.

    Raises:
        PolicyValidationError: When validation fails.
    """
    if not isinstance(document, dict) or not document:
        raise PolicyValidationError("policy document must be a non-empty mapping")
    version = document.get("version")
    if not isinstance(version, str) or not version.strip():
        raise PolicyValidationError("policy field 'version' must be a non-empty string")
    if len(version) > 64:
        raise PolicyValidationError("policy field 'version' must be at most 64 characters")

    base = document.get("base") or {}
    if not isinstance(base, dict):
        raise PolicyValidationError("'base' must be a mapping")
    base_rules = _validate_rules(base.get("rules"), "base", stages=None)

    envs = document.get("environments")
    if not isinstance(envs, dict) or not envs:
        raise PolicyValidationError("'environments' must be a non-empty mapping")

    all_stages: set[str] = set()
    for name, env in envs.items():
        if not isinstance(name, str) or not NAME_PATTERN.match(name):
            raise PolicyValidationError(f"environment name must match [a-zA-Z0-9_-]+ (got {name!r})")
        if not isinstance(env, dict):
            raise PolicyValidationError(f"environment {name!r} must be a mapping")
        stages = env.get("stages")
        if not isinstance(stages, list) or not stages:
            raise PolicyValidationError(f"environment {name!r} must list at least one stage")
        for stage in stages:
            if not isinstance(stage, str) or not NAME_PATTERN.match(stage):
                raise PolicyValidationError(
                    f"environment {name!r}: stage names must match [a-zA-Z0-9_-]+ (got {stage!r})"
                )
        if len(set(stages)) != len(stages):
            raise PolicyValidationError(f"environment {name!r}: duplicate stage names")
        all_stages.update(stages)
        _validate_rules(env.get("rules"), f"environments.{name}", stages=set(stages))

    orphaned = sorted({r["stage"] for r in base_rules} - all_stages)
    if orphaned:
        logger.warning("Base policy rules target stages no environment uses: %s", orphaned)


def _validate_rules(rules: Any, where: str, stages: set[str] | None) -> list[dict]:
    if rules is None:
        return []
    if not isinstance(rules, list):
        raise PolicyValidationError(f"{where}.rules must be a list")
    seen: set[tuple[str, str]] = set()
    for i, rule in enumerate(rules):
        loc = f"{where}.rules[{i}]"
        if not isinstance(rule, dict):
            raise PolicyValidationError(f"{loc} must be a mapping")
        unknown = set(rule) - _RULE_KEYS
        if unknown:
            raise PolicyValidationError(f"{loc}: unknown fields {sorted(unknown)}")
        stage = rule.get("stage")
        if not isinstance(stage, str) or not NAME_PATTERN.match(stage):
            raise PolicyValidationError(f"{loc}: 'stage' must match [a-zA-Z0-9_-]+")
        if stages is not None and stage not in stages:
            raise PolicyValidationError(f"{loc}: stage {stage!r} is not one of {sorted(stages)}")
        kind = rule.get("kind")
        if kind not in EVIDENCE_KINDS:
            raise PolicyValidationError(f"{loc}: unknown evidence kind {kind!r}")
        if (stage, kind) in seen:
            raise PolicyValidationError(f"{loc}: duplicate rule for {stage}/{kind}")
        seen.add((stage, kind))
        outcome = rule.get("outcome", "pass")
        if outcome not in ("pass", "fail"):
            raise PolicyValidationError(f"{loc}: 'outcome' must be 'pass' or 'fail'")
        _validate_thresholds(rule.get("thresholds"), loc)
        min_reviewers = rule.get("min_reviewers", 1)
        if not _is_positive_int(min_reviewers):
            raise PolicyValidationError(f"{loc}: 'min_reviewers' must be a positive integer")
        last_n = rule.get("last_n")
        if last_n is not None and not _is_positive_int(last_n):
            raise PolicyValidationError(f"{loc}: 'last_n' must be a positive integer")
        if last_n is not None and min_reviewers > 1:
            raise PolicyValidationError(f"{loc}: 'last_n' and 'min_reviewers' cannot be combined")
        freshness = rule.get("freshness_seconds")
        if freshness is not None and not _is_positive_int(freshness):
            raise PolicyValidationError(f"{loc}: 'freshness_seconds' must be a positive integer")
    return rules


def _validate_thresholds(thresholds: Any, loc: str) -> None:
    if thresholds is None:
        return
    if not isinstance(thresholds, list):
        raise PolicyValidationError(f"{loc}.thresholds must be a list")
    for j, t in enumerate(thresholds):
        tloc = f"{loc}.thresholds[{j}]"
        if not isinstance(t, dict):
            raise PolicyValidationError(f"{tloc} must be a mapping")
        path = t.get("path")
        if not isinstance(path, str) or not path.strip() or path.startswith(".") or ".." in path:
            raise PolicyValidationError(f"{tloc}: 'path' must be a dotted payload path")
        lo, hi = t.get("min"), t.get("max")
        if lo is None and hi is None:
            raise PolicyValidationError(f"{tloc}: at least one of 'min' or 'max' is required")
        for key, val in (("min", lo), ("max", hi)):
            if val is not None and (isinstance(val, bool) or not isinstance(val, (int, float))):
                raise PolicyValidationError(f"{tloc}: '{key}' must be a number")
        if lo is not None and hi is not None and lo > hi:
            raise PolicyValidationError(f"{tloc}: 'min' must not exceed 'max'")


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
