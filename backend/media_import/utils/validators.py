"""Validate mapping-table rows, per-job settings and asset patches at the operation boundary."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator

from media_import.core.errors import ConfigError
from media_import.services.catalog import normalize_entity_type, parse_entity_ref

REQUIRED_HEADERS = ["filename"]


class ImportSettings(BaseModel):
    """Known per-job options; anything else is carried through untouched."""

    model_config = ConfigDict(extra="allow")

    default_publish: bool = True
    duplicate_policy: Literal["warning", "error"] | None = None
    notes: str | None = None


class MappingRow(BaseModel):
    """One row of the metadata mapping table, keyed by filename."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    filename: str
    entity_type: str = "unlinked"
    entity_ref: str | None = Field(
        default=None,
        validation_alias=AliasChoices("entity_ref", "entity_slug_or_id", "entity_id"),
    )
    title: str | None = None
    caption: str | None = None
    credit: str | None = None
    alt_text: str | None = None
    tags: list[str] = Field(default_factory=list)
    latitude: float | None = Field(default=None, validation_alias=AliasChoices("latitude", "geolat"))
    longitude: float | None = Field(default=None, validation_alias=AliasChoices("longitude", "geolng"))
    publish: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _clean(cls, row: Any) -> Any:
        if not isinstance(row, dict):
            return row
        cleaned: dict[str, Any] = {}
        for key, value in row.items():
            key = str(key).strip().lower()
            if isinstance(value, str):
                value = value.strip()
                if value == "":
                    continue
            cleaned[key] = value
        tags = cleaned.get("tags")
        if isinstance(tags, str):
            cleaned["tags"] = [tag.strip() for tag in tags.split(";") if tag.strip()]
        return cleaned

    @model_validator(mode="after")
    def _check_linkage(self) -> "MappingRow":
        self.entity_type = normalize_entity_type(self.entity_type)
        ref = parse_entity_ref(self.entity_type, self.entity_ref)
        self.entity_ref = ref.reference if ref is not None else None
        return self

    @property
    def key(self) -> str:
        return self.filename.strip().lower()


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'row'}: {err['msg']}"
        for err in exc.errors()
    )


def validate_headers(headers: list[str] | None) -> None:
    """Ensure the mapping table carries the required columns."""
    if not headers:
        raise ConfigError("Mapping table requires a header row with a filename column")
    normalized = [header.strip().lower() for header in headers]
    missing = [field for field in REQUIRED_HEADERS if field not in normalized]
    if missing:
        raise ConfigError(f"Missing required column(s): {', '.join(missing)}")


def normalize_row(row: dict[str, Any], index: int = 0) -> MappingRow:
    """Clean one mapping row (trim strings, split tags, type coordinates)."""
    if not isinstance(row, dict):
        raise ConfigError(f"Mapping row {index} must be an object")
    try:
        return MappingRow.model_validate(row)
    except ValidationError as exc:
        raise ConfigError(
            f"Mapping row {index} is invalid: {_describe(exc)}",
            details={"row": index},
        ) from exc
    except ConfigError as exc:
        raise ConfigError(f"Mapping row {index} is invalid: {exc.message}", details={"row": index}) from exc


def build_mapping_index(rows: list[dict[str, Any]] | None) -> dict[str, MappingRow]:
    """Validate every row and index by lower-cased filename (last row wins)."""
    if not rows:
        return {}
    if not isinstance(rows, list):
        raise ConfigError("Mapping table must be a list of rows")
    validate_headers(sorted({str(key) for row in rows if isinstance(row, dict) for key in row}))
    index: dict[str, MappingRow] = {}
    for position, row in enumerate(rows):
        mapping_row = normalize_row(row, position)
        index[mapping_row.key] = mapping_row
    return index


def validate_settings(raw: dict[str, Any] | None) -> ImportSettings:
    if raw is None:
        return ImportSettings()
    if not isinstance(raw, dict):
        raise ConfigError("Job settings must be an object")
    try:
        return ImportSettings.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid job settings: {_describe(exc)}") from exc


class AssetPatch(BaseModel):
    """Fields an operator may change on a staged asset during review."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    caption: str | None = None
    credit: str | None = None
    alt_text: str | None = None
    tags: list[str] | None = None
    latitude: float | None = None
    longitude: float | None = None
    entity_type: str | None = None
    entity_id: str | int | None = None
    publish_requested: bool | None = None

    @model_validator(mode="before")
    @classmethod
    def _split_tags(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("tags"), str):
            data = {**data, "tags": [tag.strip() for tag in data["tags"].split(";") if tag.strip()]}
        return data


def validate_patch(raw: Any) -> dict[str, Any]:
    """Return only the fields the caller actually sent, type-checked."""
    if not isinstance(raw, dict):
        raise ConfigError("Asset patch must be an object")
    try:
        patch = AssetPatch.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid asset patch: {_describe(exc)}") from exc
    return patch.model_dump(exclude_unset=True)
