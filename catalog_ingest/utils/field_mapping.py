"""Catalog Ingest - Manifest row to track record mapping.

CSV exports disagree on header spelling ("Catalog No.", "CatalogNo",
"catalog_no", ...). Each target field has an ordered alias list; the first
alias present in the row with a non-empty value wins. Fields with no match
are left unset rather than stored as "".
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from enum import StrEnum

from catalog_ingest.models import MIGRATION_STATUS_PENDING

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "original_title": ("Original Title", "Original Title.", "original_title"),
    "genre": ("Genre", "genre"),
    "version_type": ("Version Type", "Version Type.", "version_type"),
    "isrc": ("ISRC", "isrc"),
    "composer": ("Composer", "composer"),
    "product_title": ("Product Title", "Product Title.", "product_title"),
    "catalog_no": (
        "Catalog No.",
        "Catalog No",
        "CatalogNo",
        "catalog_no",
        "Catalog no.",
        "Catalog no",
    ),
    "label": ("Label", "label"),
    "upc": ("UPC", "upc"),
    "release_date": ("Release Date", "Release Date.", "release_date"),
}

REQUIRED_FIELDS = ("original_title", "catalog_no")


def resolve_field(row: Mapping[str, str], aliases: tuple[str, ...]) -> str | None:
    """First non-empty value among the aliases, or None."""
    for alias in aliases:
        value = row.get(alias)
        if value is not None and value != "":
            return value
    return None


def normalize_isrc(isrc: str | None) -> str | None:
    """Matching key for an ISRC: trimmed and upper-cased, None if blank."""
    if isrc is None:
        return None
    isrc = isrc.strip().upper()
    return isrc or None


@dataclass
class TrackRecord:
    """Normalized catalog entry, before persistence."""

    original_title: str | None = None
    genre: str | None = None
    version_type: str | None = None
    isrc: str | None = None
    composer: str | None = None
    product_title: str | None = None
    catalog_no: str | None = None
    label: str | None = None
    upc: str | None = None
    release_date: str | None = None
    wav_url: str | None = None
    cover_url: str | None = None
    migration_status: str = MIGRATION_STATUS_PENDING
    archive_derived: bool = True

    @property
    def isrc_key(self) -> str | None:
        return normalize_isrc(self.isrc)

    @property
    def has_required_fields(self) -> bool:
        return all(getattr(self, name) for name in REQUIRED_FIELDS)

    def to_fields(self) -> dict:
        """Attribute dict for persistence, unset fields omitted."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None and getattr(self, f.name) != ""
        }


def map_row(row: Mapping[str, str]) -> TrackRecord:
    """Map one parsed manifest row to a TrackRecord. Never raises."""
    return TrackRecord(
        **{name: resolve_field(row, aliases) for name, aliases in FIELD_ALIASES.items()}
    )


def normalize_row(row: Mapping[str, str]) -> TrackRecord | None:
    """map_row(), or None when a required field is missing."""
    record = map_row(row)
    return record if record.has_required_fields else None


# --- Row decisions ---


class SkipReason(StrEnum):
    """Why a manifest row did not become a catalog record."""

    MISSING_REQUIRED_FIELDS = "missing_required_fields"
    DUPLICATE_ISRC = "duplicate_isrc"
    DUPLICATE_CATALOG_NO = "duplicate_catalog_no"


@dataclass
class RowDecision:
    """Accept/skip verdict for one record."""

    accepted: bool
    reason: SkipReason | None = None


ACCEPT = RowDecision(accepted=True)


def decide_row(
    record: TrackRecord,
    known_isrcs: set[str],
    known_catalog_nos: set[str] | None = None,
) -> RowDecision:
    """Decide whether a record should be created.

    Row-scoped problems are verdicts, never exceptions.

    Args:
        record: Mapped record.
        known_isrcs: Upper-cased ISRCs already in the catalog (or this job).
        known_catalog_nos: When given, records whose catalog_no is already
            present are skipped too.

    Returns:
        RowDecision.
    """
    if not record.has_required_fields:
        return RowDecision(accepted=False, reason=SkipReason.MISSING_REQUIRED_FIELDS)
    isrc_key = record.isrc_key
    if isrc_key is not None and isrc_key in known_isrcs:
        return RowDecision(accepted=False, reason=SkipReason.DUPLICATE_ISRC)
    if known_catalog_nos is not None and record.catalog_no in known_catalog_nos:
        return RowDecision(accepted=False, reason=SkipReason.DUPLICATE_CATALOG_NO)
    return ACCEPT
