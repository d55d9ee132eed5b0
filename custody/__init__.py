"""
Multi-party asset custody service.

This package coordinates an off-chain approval workflow, where parties sign
withdrawal proposals until a quorum is reached, with a custody ledger that
enforces ownership, activity and signature thresholds before moving funds.
"""

__all__ = ["config"]
