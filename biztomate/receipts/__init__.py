"""
Receipts module - App Store receipt validation gateway.
"""

from biztomate.receipts.router import router as receipts_router

__all__ = ["receipts_router"]
