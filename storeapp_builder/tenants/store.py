"""Tenant settings stores.

A store reads and replaces a tenant's whole settings document. Callers
do their own read-modify-write of the sub-keys they own.
"""

from __future__ import annotations

import copy
import threading
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from storeapp_builder.db import get_session
from storeapp_builder.tenants.models import Tenant


class TenantNotFoundError(Exception):
    """Raised when a tenant is not found."""

    def __init__(self, tenant_id: str) -> None:
        self.tenant_id = tenant_id
        super().__init__(f"Tenant not found: {tenant_id}")


class TenantSettingsStore(Protocol):
    """Access to tenant settings documents."""

    def get_settings(self, tenant_id: str) -> dict[str, Any] | None:
        """Return the settings document, or None for an unknown tenant."""
        ...

    def update_settings(self, tenant_id: str, settings: dict[str, Any]) -> None:
        """Replace the settings document.

        Raises:
            TenantNotFoundError: If the tenant does not exist.
        """
        ...


class SqlTenantSettingsStore:
    """Settings store backed by the tenants table.

    Args:
        session_factory: SQLAlchemy session factory.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self.session_factory = session_factory

    def _get_tenant(self, session: Session, tenant_id: str) -> Tenant | None:
        stmt = select(Tenant).where(Tenant.id == tenant_id)
        return session.execute(stmt).scalar_one_or_none()

    def get_settings(self, tenant_id: str) -> dict[str, Any] | None:
        with get_session(self.session_factory) as session:
            tenant = self._get_tenant(session, tenant_id)
            if tenant is None:
                return None
            return dict(tenant.settings or {})

    def update_settings(self, tenant_id: str, settings: dict[str, Any]) -> None:
        with get_session(self.session_factory) as session:
            tenant = self._get_tenant(session, tenant_id)
            if tenant is None:
                raise TenantNotFoundError(tenant_id)
            tenant.settings = dict(settings)

    def create_tenant(
        self,
        tenant_id: str,
        name: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> None:
        """Insert a tenant row if it does not exist yet."""
        with get_session(self.session_factory) as session:
            if self._get_tenant(session, tenant_id) is None:
                session.add(Tenant(id=tenant_id, name=name, settings=settings or {}))


class InMemoryTenantSettingsStore:
    """Process-local settings store.

    Args:
        tenants: Initial settings documents keyed by tenant ID.
    """

    def __init__(self, tenants: dict[str, dict[str, Any]] | None = None) -> None:
        self._tenants: dict[str, dict[str, Any]] = copy.deepcopy(tenants or {})
        self._lock = threading.Lock()

    def get_settings(self, tenant_id: str) -> dict[str, Any] | None:
        with self._lock:
            settings = self._tenants.get(tenant_id)
            return copy.deepcopy(settings) if settings is not None else None

    def update_settings(self, tenant_id: str, settings: dict[str, Any]) -> None:
        with self._lock:
            if tenant_id not in self._tenants:
                raise TenantNotFoundError(tenant_id)
            self._tenants[tenant_id] = copy.deepcopy(settings)

    def create_tenant(
        self,
        tenant_id: str,
        name: str | None = None,
        settings: dict[str, Any] | None = None,
    ) -> None:
        with self._lock:
            self._tenants.setdefault(tenant_id, copy.deepcopy(settings or {}))


__all__ = [
    "InMemoryTenantSettingsStore",
    "SqlTenantSettingsStore",
    "TenantNotFoundError",
    "TenantSettingsStore",
]
