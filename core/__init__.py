"""Core module - configuration and observability shared by every package.

ERP-specific logic (Dilovod) and storefront-specific logic (SalesDrive)
belong in /connectors/.
"""

__version__ = "1.0.0"
