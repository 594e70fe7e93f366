"""AttestGate: pipeline policy and attestation engine."""

__version__ = "0.1.0"
