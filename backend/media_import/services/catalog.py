"""Typed references to catalog entities and the linker that attaches media to them.

Each entity kind is its own reference type. Villages, districts and galleries
are addressed by slug; providers, listings, events and products by numeric id.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import ClassVar, Union

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from media_import.core.errors import CommitError, ConfigError
from media_import.db.models import UNLINKED, CatalogEntity, EntityMediaLink, StagedAsset

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlugRef:
    kind: ClassVar[str]
    slug: str

    @property
    def reference(self) -> str:
        return self.slug


@dataclass(frozen=True)
class IdRef:
    kind: ClassVar[str]
    entity_id: int

    @property
    def reference(self) -> str:
        return str(self.entity_id)


@dataclass(frozen=True)
class VillageRef(SlugRef):
    kind = "village"


@dataclass(frozen=True)
class DistrictRef(SlugRef):
    kind = "district"


@dataclass(frozen=True)
class GalleryRef(SlugRef):
    kind = "gallery"


@dataclass(frozen=True)
class ProviderRef(IdRef):
    kind = "provider"


@dataclass(frozen=True)
class ListingRef(IdRef):
    kind = "listing"


@dataclass(frozen=True)
class EventRef(IdRef):
    kind = "event"


@dataclass(frozen=True)
class ProductRef(IdRef):
    kind = "product"


EntityRef = Union[
    VillageRef, DistrictRef, GalleryRef, ProviderRef, ListingRef, EventRef, ProductRef
]

ENTITY_REF_TYPES: dict[str, type] = {
    cls.kind: cls
    for cls in (VillageRef, DistrictRef, GalleryRef, ProviderRef, ListingRef, EventRef, ProductRef)
}
ENTITY_KINDS = frozenset(ENTITY_REF_TYPES)


def normalize_entity_type(value: str | None) -> str:
    kind = (value or "").strip().lower()
    if not kind or kind == UNLINKED:
        return UNLINKED
    if kind not in ENTITY_KINDS:
        raise ConfigError(
            f"Unknown entity type '{value}'",
            details={"allowed": sorted(ENTITY_KINDS)},
        )
    return kind


def parse_entity_ref(entity_type: str | None, reference: str | int | None) -> EntityRef | None:
    """Build the typed reference for a kind/reference pair; None when unlinked."""
    kind = normalize_entity_type(entity_type)
    if kind == UNLINKED:
        return None
    ref_text = str(reference).strip() if reference is not None else ""
    if not ref_text:
        raise ConfigError(f"Entity type '{kind}' requires an entity slug or id")

    ref_type = ENTITY_REF_TYPES[kind]
    if issubclass(ref_type, IdRef):
        try:
            return ref_type(entity_id=int(ref_text))
        except ValueError as exc:
            raise ConfigError(f"'{kind}' entities are referenced by numeric id, got '{ref_text}'") from exc
    return ref_type(slug=ref_text.lower())


def asset_entity_ref(asset: StagedAsset) -> EntityRef | None:
    return parse_entity_ref(asset.entity_type, asset.entity_id)


class CatalogLinker(ABC):
    """Capability the commit step needs from the catalog store."""

    @abstractmethod
    def resolve(self, ref: EntityRef) -> int | None:
        """Return the catalog id for a reference, or None when it does not exist."""

    @abstractmethod
    def attach(self, ref: EntityRef, asset: StagedAsset) -> None:
        """Link a published asset to its entity."""

    @abstractmethod
    def detach_assets(self, asset_ids: list[str]) -> int:
        """Remove every link pointing at the given assets."""


class SqlCatalogLinker(CatalogLinker):
    def __init__(self, session: Session):
        self.session = session

    def resolve(self, ref: EntityRef) -> int | None:
        query = select(CatalogEntity.id).where(CatalogEntity.kind == ref.kind)
        if isinstance(ref, SlugRef):
            query = query.where(func.lower(CatalogEntity.slug) == ref.slug)
        else:
            query = query.where(CatalogEntity.id == ref.entity_id)
        return self.session.scalar(query)

    def attach(self, ref: EntityRef, asset: StagedAsset) -> None:
        entity_id = self.resolve(ref)
        if entity_id is None:
            raise CommitError(
                f"{ref.kind} '{ref.reference}' does not exist in the catalog",
                details={"entity_type": ref.kind, "entity_ref": ref.reference},
            )
        existing = self.session.scalar(
            select(EntityMediaLink.id).where(
                EntityMediaLink.entity_id == entity_id,
                EntityMediaLink.asset_id == asset.id,
            )
        )
        if existing is not None:
            return
        position = self.session.scalar(
            select(func.count(EntityMediaLink.id)).where(EntityMediaLink.entity_id == entity_id)
        ) or 0
        self.session.add(EntityMediaLink(entity_id=entity_id, asset_id=asset.id, position=position))
        self.session.flush()
        logger.debug(f"Linked asset {asset.id} to {ref.kind} {ref.reference}")

    def detach_assets(self, asset_ids: list[str]) -> int:
        if not asset_ids:
            return 0
        result = self.session.execute(
            delete(EntityMediaLink).where(EntityMediaLink.asset_id.in_(asset_ids))
        )
        return result.rowcount or 0
