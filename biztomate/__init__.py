"""
Biztomate Billing.

Purchase receipt validation and subscription entitlement resolution
for the Biztomate business-card scanner.
"""

__version__ = "0.1.0"
