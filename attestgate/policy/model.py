"""Immutable policy snapshot: rules per environment/stage, composed from base + overrides.

A snapshot is built once from a validated policy document and never mutated.
Evaluations receive the snapshot explicitly, so a publish during an evaluation
cannot change the rules it sees.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from attestgate.errors import NoPolicyDefined


@dataclass(frozen=True)
class Threshold:
    """Inclusive numeric bound on a dotted payload path, e.g. findings.critical <= 0."""

    path: str
    max: float | None = None
    min: float | None = None


@dataclass(frozen=True)
class PolicyRule:
    """Requirement that evidence of one kind satisfy a predicate before a stage is admitted."""

    stage: str
    kind: str
    outcome: str = "pass"
    thresholds: tuple[Threshold, ...] = ()
    min_reviewers: int = 1
    last_n: int | None = None
    freshness_seconds: int | None = None
    description: str = ""

    @property
    def rule_id(self) -> str:
        return f"{self.stage}/{self.kind}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PolicyRule:
        thresholds = tuple(
            Threshold(
                path=str(t["path"]),
                max=float(t["max"]) if t.get("max") is not None else None,
                min=float(t["min"]) if t.get("min") is not None else None,
            )
            for t in (data.get("thresholds") or [])
        )
        return cls(
            stage=str(data["stage"]),
            kind=str(data["kind"]),
            outcome=str(data.get("outcome", "pass")),
            thresholds=thresholds,
            min_reviewers=int(data.get("min_reviewers", 1)),
            last_n=int(data["last_n"]) if data.get("last_n") is not None else None,
            freshness_seconds=(
                int(data["freshness_seconds"])
                if data.get("freshness_seconds") is not None
                else None
            ),
            description=str(data.get("description") or ""),
        )


@dataclass(frozen=True)
class EnvironmentPolicy:
    """Ordered stages and composed rules for one target environment."""

    name: str
    stages: tuple[str, ...]
    rules: tuple[PolicyRule, ...]

    def rules_for(self, stage: str) -> tuple[PolicyRule, ...]:
        return tuple(r for r in self.rules if r.stage == stage)


def compose_rules(
    stages: tuple[str, ...],
    base_rules: tuple[PolicyRule, ...],
    override_rules: tuple[PolicyRule, ...],
) -> tuple[PolicyRule, ...]:
    """Compose base and environment rules, stage by stage.

    Override rules replace base rules with the same (stage, kind) in place;
    override-only rules follow in file order. Base rules for stages the
    environment does not have are dropped.
    """
    composed: list[PolicyRule] = []
    for stage in stages:
        overrides = {r.kind: r for r in override_rules if r.stage == stage}
        used: set[str] = set()
        for rule in base_rules:
            if rule.stage != stage:
                continue
            if rule.kind in overrides:
                composed.append(overrides[rule.kind])
                used.add(rule.kind)
            else:
                composed.append(rule)
        for rule in override_rules:
            if rule.stage == stage and rule.kind not in used:
                composed.append(rule)
    return tuple(composed)


@dataclass(frozen=True)
class PolicySnapshot:
    """One published policy version, composed and frozen."""

    version: str
    checksum: str
    environments: Mapping[str, EnvironmentPolicy]
    policy_id: int | None = None

    @classmethod
    def from_document(
        cls,
        document: Mapping[str, Any],
        checksum: str,
        policy_id: int | None = None,
    ) -> PolicySnapshot:
        """Build a snapshot from a validated document (see policy.validator)."""
        base = document.get("base") or {}
        base_rules = tuple(PolicyRule.from_dict(r) for r in (base.get("rules") or []))
        envs: dict[str, EnvironmentPolicy] = {}
        for name, env in (document.get("environments") or {}).items():
            stages = tuple(str(s) for s in env.get("stages") or [])
            override_rules = tuple(PolicyRule.from_dict(r) for r in (env.get("rules") or []))
            envs[name] = EnvironmentPolicy(
                name=name,
                stages=stages,
                rules=compose_rules(stages, base_rules, override_rules),
            )
        return cls(
            version=str(document["version"]),
            checksum=checksum,
            environments=MappingProxyType(envs),
            policy_id=policy_id,
        )

    def environment(self, environment: str) -> EnvironmentPolicy:
        env = self.environments.get(environment)
        if env is None or not env.stages:
            raise NoPolicyDefined(environment, None, "environment not configured")
        return env

    def stages_for(self, environment: str) -> tuple[str, ...]:
        return self.environment(environment).stages

    def resolve(self, environment: str, stage: str) -> tuple[PolicyRule, ...]:
        """Return the ordered rules for environment/stage.

        Raises NoPolicyDefined when the environment is unknown, the stage is not
        one of its stages, or the stage has no rules: an empty rule set would
        otherwise admit everything.
        """
        env = self.environment(environment)
        if stage not in env.stages:
            raise NoPolicyDefined(environment, stage, "stage not configured")
        rules = env.rules_for(stage)
        if not rules:
            raise NoPolicyDefined(environment, stage, "stage has no rules")
        return rules

    def find_rule(self, environment: str, stage: str, rule_id: str) -> PolicyRule | None:
        try:
            rules = self.resolve(environment, stage)
        except NoPolicyDefined:
            return None
        return next((r for r in rules if r.rule_id == rule_id), None)
