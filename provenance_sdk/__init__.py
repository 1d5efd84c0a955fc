"""
Provenance SDK

Thin synchronous client for the provenance gateway.
"""

from provenance_sdk.client import ProvenanceClient
from provenance_sdk.models import (
    ChainResult,
    DecisionResult,
    EntryResult,
    OverrideResult,
    ProposalResult,
)

__all__ = [
    "ProvenanceClient",
    "ChainResult",
    "DecisionResult",
    "EntryResult",
    "OverrideResult",
    "ProposalResult",
]
