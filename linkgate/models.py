"""
SQLAlchemy database models for linkgate.

Pages and their ordered links. A gated link's ``url`` column holds the
encrypted record, an ungated link's holds the plaintext URL.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def generate_uuid():
    """Generate a UUID string for primary keys."""
    return str(uuid.uuid4())


def utc_now():
    """Generate timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Page(Base):
    """
    A link-in-bio page owned by one wallet.
    """

    __tablename__ = "pages"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    slug = Column(String(100), unique=True, nullable=False)
    wallet_address = Column(String(64), nullable=False)
    connected_token = Column(String(64))  # Token all gated links on this page are checked against
    token_symbol = Column(String(32))
    title = Column(String(100))
    created_at = Column(DateTime, default=utc_now, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)

    # Relationships
    links = relationship(
        "Link",
        back_populates="page",
        cascade="all, delete-orphan",
        order_by="Link.order",
    )

    __table_args__ = (
        Index("idx_page_slug", "slug"),
        Index("idx_page_wallet", "wallet_address"),
    )

    def __repr__(self):
        return f"<Page(slug={self.slug}, wallet={self.wallet_address[:8]}...)>"


class Link(Base):
    """
    One entry of a page's link list.
    """

    __tablename__ = "links"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    page_id = Column(String(36), ForeignKey("pages.id"), nullable=False)
    preset_id = Column(String(50), nullable=False)
    title = Column(String(255))
    url = Column(Text)  # Encrypted record when token_gated, plaintext otherwise
    order = Column(Integer, nullable=False, default=0)
    token_gated = Column(Boolean, nullable=False, default=False)
    required_tokens = Column(JSON, nullable=False, default=list)  # Decimal strings; only [0] is used

    # Relationships
    page = relationship("Page", back_populates="links")

    __table_args__ = (Index("idx_link_page_order", "page_id", "order"),)

    def __repr__(self):
        return f"<Link(id={self.id}, preset={self.preset_id}, gated={self.token_gated})>"
