"""
Atelier service layer.

Credit ledger, action pricing and object storage shared by the generation,
purchase and billing components.
"""

from . import credit_ledger_service, pricing_service, storage_service

__all__ = [
    "credit_ledger_service",
    "pricing_service",
    "storage_service",
]
