"""Catalog entities that published media can be attached to."""

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from media_import.db.base import Base


class CatalogEntity(Base):
    __tablename__ = "catalog_entities"

    id = Column(Integer, primary_key=True)
    kind = Column(String(32), nullable=False, index=True)
    slug = Column(String(128))
    name = Column(String(255), nullable=False)

    __table_args__ = (UniqueConstraint("kind", "slug", name="uq_catalog_entities_kind_slug"),)


class EntityMediaLink(Base):
    __tablename__ = "entity_media_links"

    id = Column(Integer, primary_key=True)
    entity_id = Column(Integer, ForeignKey("catalog_entities.id", ondelete="CASCADE"), nullable=False)
    asset_id = Column(
        String(36),
        ForeignKey("staged_assets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("entity_id", "asset_id", name="uq_entity_media_links"),)
