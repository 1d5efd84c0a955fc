"""Decision provenance ledger and veto governance core."""

__version__ = "1.0.0"
