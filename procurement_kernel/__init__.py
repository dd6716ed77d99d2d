"""
Procurement Kernel

The request-to-delivery lifecycle core for construction-materials
procurement:
- Role-gated request state machine
- Multi-vendor cost comparison with manager decision
- Purchase order issuance with deterministic line totals
- Delivery reconciliation that never over-delivers
- Central stock ledger with append-only movements
"""

__version__ = "0.1.0"
