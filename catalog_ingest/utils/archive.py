"""Catalog Ingest - ZIP archive extraction.

An uploaded archive carries one CSV manifest, WAV files named by ISRC and
optionally a cover image. Everything else is ignored.

Classification looks at the base filename only (directories stripped,
case-insensitive):
- *.csv                  -> manifest (first one wins)
- *.wav                  -> audio, keyed by upper-cased filename stem
- *.jpg / *.jpeg / *.png -> cover (first one wins)

Two strategies, identical results:
- extract_archive(): eager, every wanted member decompressed into memory
  first, then folded
- extract_archive_stream(): streaming, members pulled one at a time from
  iter_archive_members(). Peak memory is one member plus the kept payloads.

Neither strategy decompresses unwanted members.
"""

from __future__ import annotations

import io
import logging
import zipfile
import zlib
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import BinaryIO

from catalog_ingest.errors import ArchiveFormatError

logger = logging.getLogger(__name__)

COVER_EXTENSIONS = (".jpg", ".jpeg", ".png")

# Corrupt or unsupported member data
MEMBER_READ_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    zlib.error,
    NotImplementedError,
    OSError,
    EOFError,
)


class MemberKind(StrEnum):
    """Classification of an archive member."""

    MANIFEST = "manifest"
    AUDIO = "audio"
    COVER = "cover"


@dataclass
class ArchiveMember:
    """One wanted archive member with its decompressed bytes.

    key is the upper-cased stem for audio, the lowercase extension for
    covers and None for the manifest.
    """

    name: str
    kind: MemberKind
    key: str | None
    data: bytes


@dataclass
class ExtractedArchiveContents:
    """Job-scoped extraction result. Discarded after upload."""

    csv_text: str | None = None
    wav_files: dict[str, bytes] = field(default_factory=dict)
    cover_bytes: bytes | None = None
    cover_type: str | None = None  # "png" or "jpeg"

    @property
    def cover_extension(self) -> str:
        return "png" if self.cover_type == "png" else "jpg"

    @property
    def cover_content_type(self) -> str:
        return "image/png" if self.cover_type == "png" else "image/jpeg"


def base_name(member_name: str) -> str:
    """Filename without directory components (both separator styles)."""
    return member_name.replace("\\", "/").rsplit("/", 1)[-1]


def classify_member(member_name: str) -> tuple[MemberKind, str | None] | None:
    """Classify a member by its base filename.

    Returns:
        (kind, key) for wanted members, None for directories and anything else.
    """
    if not member_name or member_name.endswith(("/", "\\")):
        return None

    name = base_name(member_name)
    lower = name.lower()
    if not lower:
        return None

    if lower.endswith(".csv"):
        return MemberKind.MANIFEST, None
    if lower.endswith(".wav"):
        stem = name[: -len(".wav")]
        if not stem:
            return None
        return MemberKind.AUDIO, stem.upper()
    if lower.endswith(COVER_EXTENSIONS):
        return MemberKind.COVER, "png" if lower.endswith(".png") else "jpeg"
    return None


def decode_manifest(data: bytes) -> str:
    """Decode manifest bytes. A UTF-8 byte order mark is dropped."""
    return data.decode("utf-8-sig", errors="replace")


def _open_zip(source: BinaryIO) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(source)
    except (zipfile.BadZipFile, zipfile.LargeZipFile, OSError, ValueError) as e:
        raise ArchiveFormatError(str(e) or e.__class__.__name__) from e


def iter_archive_members(source: BinaryIO) -> Iterator[ArchiveMember]:
    """Lazily yield wanted members, one decompressed member at a time.

    Finite and not restartable. Unwanted members are skipped without being
    decompressed.

    Args:
        source: Seekable binary file object holding the archive.

    Raises:
        ArchiveFormatError: If the container or a member cannot be read.
    """
    with _open_zip(source) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            classified = classify_member(info.filename)
            if classified is None:
                continue
            kind, key = classified
            try:
                data = archive.read(info)
            except MEMBER_READ_ERRORS as e:
                raise ArchiveFormatError(f"cannot read member {info.filename}: {e}") from e
            yield ArchiveMember(name=info.filename, kind=kind, key=key, data=data)


def collect_members(members: Iterable[ArchiveMember]) -> ExtractedArchiveContents:
    """Fold classified members into ExtractedArchiveContents.

    First manifest, first cover and first WAV per ISRC win.
    """
    contents = ExtractedArchiveContents()
    for member in members:
        if member.kind == MemberKind.MANIFEST:
            if contents.csv_text is None:
                contents.csv_text = decode_manifest(member.data)
            else:
                logger.warning("Ignoring extra manifest %s", member.name)
        elif member.kind == MemberKind.AUDIO:
            if member.key in contents.wav_files:
                logger.warning("Ignoring duplicate audio file %s", member.name)
            else:
                contents.wav_files[member.key] = member.data
        elif member.kind == MemberKind.COVER:
            if contents.cover_bytes is None:
                contents.cover_bytes = member.data
                contents.cover_type = member.key
            else:
                logger.debug("Ignoring extra cover image %s", member.name)
    return contents


def extract_archive_stream(source: BinaryIO) -> ExtractedArchiveContents:
    """Streaming extraction from a seekable file object."""
    return collect_members(iter_archive_members(source))


def extract_archive(data: bytes) -> ExtractedArchiveContents:
    """Eager extraction: decompress every wanted member into memory, then fold.

    Unwanted members are never decompressed, so a corrupt readme fails
    neither strategy.

    Raises:
        ArchiveFormatError: If the container or a wanted member cannot be read.
    """
    members = []
    with _open_zip(io.BytesIO(data)) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            classified = classify_member(info.filename)
            if classified is None:
                continue
            kind, key = classified
            try:
                member_data = archive.read(info)
            except MEMBER_READ_ERRORS as e:
                raise ArchiveFormatError(f"cannot read member {info.filename}: {e}") from e
            members.append(ArchiveMember(name=info.filename, kind=kind, key=key, data=member_data))
    return collect_members(members)
