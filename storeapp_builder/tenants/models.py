"""Tenant ORM model.

Only the settings document is modelled; the rest of the tenant record is
owned by the storefront platform.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.ext.mutable import MutableDict
from sqlalchemy.orm import Mapped, mapped_column

from storeapp_builder.db import Base


class Tenant(Base):
    """ORM model for a tenant and its settings document.

    Attributes:
        id: Tenant identifier.
        name: Optional display name.
        settings: JSON settings document; the app builder keeps its
            encrypted configuration under the ``appBuilder`` key.
        created_at: Timestamp of creation.
        updated_at: Timestamp of last update.
    """

    __tablename__ = "tenants"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    settings: Mapped[dict[str, Any] | None] = mapped_column(
        MutableDict.as_mutable(JSON), nullable=True, default=dict
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        """Return string representation of Tenant."""
        return f"<Tenant(id='{self.id}', name='{self.name}')>"


__all__ = ["Tenant"]
