"""Tenant settings module.

This module handles:
- The tenant settings document (SQLAlchemy model and stores)
- Encryption of the app builder sub-document at rest
"""

from storeapp_builder.tenants.store import TenantNotFoundError

__all__ = ["TenantNotFoundError"]
