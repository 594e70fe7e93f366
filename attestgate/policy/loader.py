"""Policy loader: read base.yaml + environments/*.yaml into one validated document."""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from attestgate.config import get_settings
from attestgate.policy.model import PolicySnapshot
from attestgate.policy.validator import (
    NAME_PATTERN,
    PolicyValidationError,
    validate_policy_document,
)

logger = logging.getLogger(__name__)


def compute_policy_checksum(document: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of a policy document.

    Deterministic for equal documents regardless of key order.
    """
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _policy_root(policy_dir: str | Path | None) -> Path:
    """Resolve the policy directory; relative paths are taken from the project root."""
    raw = Path(policy_dir or get_settings().policy_dir)
    if raw.is_absolute():
        return raw
    # attestgate/policy/loader.py -> project_root
    return Path(__file__).resolve().parent.parent.parent / raw


def _read_yaml(path: Path) -> Any:
    with path.open(encoding="utf-8") as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise PolicyValidationError(f"{path.name}: invalid YAML: {e}") from e


def load_policy_document(policy_dir: str | Path | None = None) -> dict[str, Any]:
    """Load and validate the policy document from a directory.

    Layout:
        base.yaml               version + rules shared by every environment
        environments/<env>.yaml stages + rules overriding/adding to base

    Raises:
        FileNotFoundError: Directory or base.yaml missing.
        PolicyValidationError: Invalid YAML or document.
    """
    root = _policy_root(policy_dir)
    if not root.is_dir():
        raise FileNotFoundError(f"Policy directory not found: {root}")
    base_path = root / "base.yaml"
    if not base_path.exists():
        raise FileNotFoundError(f"base.yaml not found: {base_path}")

    base = _read_yaml(base_path) or {}
    if not isinstance(base, dict):
        raise PolicyValidationError("base.yaml must be a mapping")

    environments: dict[str, Any] = {}
    env_dir = root / "environments"
    if env_dir.is_dir():
        for path in sorted(env_dir.glob("*.yaml")):
            if not NAME_PATTERN.match(path.stem):
                raise PolicyValidationError(f"invalid environment file name: {path.name}")
            environments[path.stem] = _read_yaml(path) or {}

    document = {
        "version": base.get("version"),
        "base": {"rules": base.get("rules") or []},
        "environments": environments,
    }
    try:
        validate_policy_document(document)
    except PolicyValidationError as e:
        logger.warning("Policy in %s failed validation: %s", root, e)
        raise
    return document


def load_policy_snapshot(policy_dir: str | Path | None = None) -> PolicySnapshot:
    """Load, validate and compose the policy directory into an unpublished snapshot."""
    document = load_policy_document(policy_dir)
    return PolicySnapshot.from_document(document, compute_policy_checksum(document))
