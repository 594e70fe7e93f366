"""
Centralized test credentials and secrets.

All test-only tokens are loaded from environment variables when available,
with clearly non-production placeholders as fallbacks.
"""

from __future__ import annotations

import os

# API tokens: load from env; fallback is obviously a placeholder
TEST_GATE_TOKEN = os.environ.get("TEST_GATE_TOKEN") or "test-gate-token"
TEST_EVIDENCE_TOKEN = os.environ.get("TEST_EVIDENCE_TOKEN") or "test-evidence-token"
TEST_OVERRIDE_TOKEN = os.environ.get("TEST_OVERRIDE_TOKEN") or "test-override-token"

GATE_HEADERS = {"X-Gate-Token": TEST_GATE_TOKEN}
EVIDENCE_HEADERS = {"X-Evidence-Token": TEST_EVIDENCE_TOKEN}
OVERRIDE_HEADERS = {"X-Override-Token": TEST_OVERRIDE_TOKEN}

# Commit used by most fixtures
TEST_COMMIT = "3f9c2ab41d07e6c58a1b2c3d4e5f60718293a4b5"
OTHER_COMMIT = "0000000000000000000000000000000000000abc"

# Small policy used across controller and API tests. Freshness windows are
# generous so evidence timestamped "now" stays fresh for the whole test.
TEST_POLICY = {
    "version": "test-1",
    "base": {
        "rules": [
            {"stage": "build", "kind": "secret_scan", "outcome": "pass", "freshness_seconds": 3600},
            {"stage": "build", "kind": "signature", "outcome": "pass", "freshness_seconds": 3600},
            {
                "stage": "deploy",
                "kind": "approval",
                "outcome": "pass",
                "freshness_seconds": 3600,
            },
        ]
    },
    "environments": {
        "staging": {"stages": ["build", "deploy"]},
        "production": {
            "stages": ["build", "deploy"],
            "rules": [
                {
                    "stage": "deploy",
                    "kind": "approval",
                    "outcome": "pass",
                    "freshness_seconds": 3600,
                    "min_reviewers": 2,
                }
            ],
        },
    },
}
