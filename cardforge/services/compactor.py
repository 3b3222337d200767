"""
Dataset Compactor.

Serializes the canonical card table and its artwork into one versioned,
xz-compressed blob with a checksummed header, and decodes it again on the
consumer side.

Blob layout:
    header   struct "<4sIIQ": magic, format version, record count, checksum
    payload  xz(LZMA2) of the card table followed by the asset table

The checksum is blake2b-64 over the COMPRESSED payload, so a loader can
reject a damaged blob before decompressing it.

INVARIANTS:
1. decode_dataset(compact(cards, ...).to_bytes()).cards == cards
2. Identical input gives byte-identical output
3. write_dataset() never leaves a partial file behind; on failure the
   previously written dataset is untouched
4. FORMAT_VERSION is bumped on any incompatible layout change
5. External artwork files are content-addressed and never overwritten
"""

import hashlib
import logging
import lzma
import os
import struct
import tempfile
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Literal

from cardforge.config import IMAGE_DIRECTORY, IMAGE_FILE_ENDING
from cardforge.models.card import ArtworkAsset, Card, CardCategory, CardLimit, SetMembership
from cardforge.models.failure import ChecksumError, CompactionError, DatasetFormatError

logger = logging.getLogger(__name__)

MAGIC = b"YGOC"
FORMAT_VERSION = 1
HEADER = struct.Struct("<4sIIQ")

# Fixed filter chain; presets alone may change between liblzma releases
LZMA_FILTERS = [{"id": lzma.FILTER_LZMA2, "preset": 9, "dict_size": 1 << 24}]

ArtworkMode = Literal["external", "embed"]

# Wire codes. Append only.
CATEGORY_CODES = {
    CardCategory.MONSTER: 0,
    CardCategory.SPELL: 1,
    CardCategory.TRAP: 2,
    CardCategory.UNKNOWN: 3,
}
LIMIT_CODES = {
    CardLimit.UNLIMITED: 0,
    CardLimit.SEMI_LIMITED: 1,
    CardLimit.LIMITED: 2,
    CardLimit.BANNED: 3,
}
CATEGORY_BY_CODE = {code: category for category, code in CATEGORY_CODES.items()}
LIMIT_BY_CODE = {code: limit for limit, code in LIMIT_CODES.items()}


class AssetKind(IntEnum):
    EMBEDDED = 0
    EXTERNAL = 1


@dataclass(frozen=True, slots=True)
class AssetEntry:
    """
    Artwork entry of the asset table.

    Exactly one of `data` (embedded bytes) or `reference` (path relative to
    the dataset file) is set.
    """

    card_id: int
    content_hash: str
    source_format: str
    target_format: str
    data: bytes | None = field(default=None, repr=False)
    reference: str | None = None

    @property
    def kind(self) -> AssetKind:
        return AssetKind.EMBEDDED if self.data is not None else AssetKind.EXTERNAL


@dataclass(frozen=True, slots=True)
class CompactedDataset:
    """
    A serialized dataset: decoded contents plus the compressed payload.

    Attributes:
        version: Format version the payload was written with
        cards: Canonical cards, sorted by id
        assets: Artwork entries keyed by card id
        payload: xz-compressed card and asset tables
        checksum: blake2b-64 of payload
    """

    version: int
    cards: tuple[Card, ...]
    assets: dict[int, AssetEntry]
    payload: bytes = field(repr=False)
    checksum: int

    @property
    def record_count(self) -> int:
        return len(self.cards)

    @property
    def checksum_hex(self) -> str:
        return f"{self.checksum:016x}"

    def to_bytes(self) -> bytes:
        header = HEADER.pack(MAGIC, self.version, self.record_count, self.checksum)
        return header + self.payload


def artwork_reference(content_hash: str) -> str:
    """
    Path of an external artwork file, relative to the dataset file.

    Files are named by content, so writing new artwork never changes a file
    that the currently published dataset points at.
    """
    return f"{IMAGE_DIRECTORY}/{content_hash}.{IMAGE_FILE_ENDING}"


def payload_checksum(payload: bytes) -> int:
    digest = hashlib.blake2b(payload, digest_size=8).digest()
    return int.from_bytes(digest, "little")


# =============================================================================
# BINARY ENCODING
# =============================================================================


class _Writer:
    """Little-endian, length-prefixed field writer."""

    def __init__(self) -> None:
        self._parts: list[bytes] = []

    def u8(self, value: int) -> None:
        self._parts.append(struct.pack("<B", value))

    def u32(self, value: int) -> None:
        self._parts.append(struct.pack("<I", value))

    def i16(self, value: int) -> None:
        self._parts.append(struct.pack("<h", value))

    def raw(self, value: bytes) -> None:
        self.u32(len(value))
        self._parts.append(value)

    def text(self, value: str) -> None:
        self.raw(value.encode("utf-8"))

    def optional_text(self, value: str | None) -> None:
        if value is None:
            self.u8(0)
        else:
            self.u8(1)
            self.text(value)

    def optional_i16(self, value: int | None) -> None:
        if value is None:
            self.u8(0)
        else:
            self.u8(1)
            self.i16(value)

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class _Reader:
    """Counterpart of _Writer; every read is bounds checked."""

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def _take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise DatasetFormatError(
                "Dataset payload is truncated",
                detail=f"wanted {size} bytes at offset {self._offset}",
            )
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def u8(self) -> int:
        return self._take(1)[0]

    def u32(self) -> int:
        return struct.unpack("<I", self._take(4))[0]

    def i16(self) -> int:
        return struct.unpack("<h", self._take(2))[0]

    def raw(self) -> bytes:
        return self._take(self.u32())

    def text(self) -> str:
        data = self.raw()
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DatasetFormatError("Dataset string is not valid UTF-8", detail=str(e)) from e

    def _present(self) -> bool:
        tag = self.u8()
        if tag not in (0, 1):
            raise DatasetFormatError("Invalid presence tag", detail=f"tag {tag}")
        return tag == 1

    def optional_text(self) -> str | None:
        return self.text() if self._present() else None

    def optional_i16(self) -> int | None:
        return self.i16() if self._present() else None

    @property
    def exhausted(self) -> bool:
        return self._offset == len(self._data)


def _encode_card(writer: _Writer, card: Card) -> None:
    writer.u32(card.id)
    writer.text(card.name)
    writer.u8(CATEGORY_CODES[card.category])
    writer.text(card.card_type)
    writer.optional_text(card.race)
    writer.optional_text(card.attribute)
    writer.optional_text(card.archetype)
    writer.text(card.description)
    writer.optional_i16(card.atk)
    writer.optional_i16(card.def_)
    writer.optional_i16(card.level)
    writer.optional_i16(card.link_value)
    writer.optional_i16(card.pendulum_scale)
    writer.u32(len(card.link_markers))
    for marker in card.link_markers:
        writer.text(marker)
    writer.u8(LIMIT_CODES[card.limit])
    writer.u32(len(card.sets))
    for membership in card.sets:
        writer.text(membership.set_code)
        writer.text(membership.rarity)
    writer.u32(len(card.alternate_ids))
    for alternate_id in card.alternate_ids:
        writer.u32(alternate_id)
    writer.optional_text(card.artwork_url)


def _decode_card(reader: _Reader) -> Card:
    card_id = reader.u32()
    name = reader.text()

    category_code = reader.u8()
    if category_code not in CATEGORY_BY_CODE:
        raise DatasetFormatError("Unknown card category code", detail=f"code {category_code}")

    card_type = reader.text()
    race = reader.optional_text()
    attribute = reader.optional_text()
    archetype = reader.optional_text()
    description = reader.text()
    atk = reader.optional_i16()
    def_ = reader.optional_i16()
    level = reader.optional_i16()
    link_value = reader.optional_i16()
    pendulum_scale = reader.optional_i16()
    link_markers = tuple(reader.text() for _ in range(reader.u32()))

    limit_code = reader.u8()
    if limit_code not in LIMIT_BY_CODE:
        raise DatasetFormatError("Unknown banlist code", detail=f"code {limit_code}")

    sets = tuple(SetMembership(reader.text(), reader.text()) for _ in range(reader.u32()))
    alternate_ids = tuple(reader.u32() for _ in range(reader.u32()))
    artwork_url = reader.optional_text()

    return Card(
        id=card_id,
        name=name,
        category=CATEGORY_BY_CODE[category_code],
        card_type=card_type,
        race=race,
        attribute=attribute,
        archetype=archetype,
        description=description,
        atk=atk,
        def_=def_,
        level=level,
        link_value=link_value,
        link_markers=link_markers,
        pendulum_scale=pendulum_scale,
        limit=LIMIT_BY_CODE[limit_code],
        sets=sets,
        alternate_ids=alternate_ids,
        artwork_url=artwork_url,
    )


def _encode_asset(writer: _Writer, entry: AssetEntry) -> None:
    writer.u32(entry.card_id)
    writer.u8(entry.kind)
    writer.text(entry.content_hash)
    writer.text(entry.source_format)
    writer.text(entry.target_format)
    if entry.data is not None:
        writer.raw(entry.data)
    else:
        writer.text(entry.reference or "")


def _decode_asset(reader: _Reader) -> AssetEntry:
    card_id = reader.u32()
    kind = reader.u8()
    content_hash = reader.text()
    source_format = reader.text()
    target_format = reader.text()

    if kind == AssetKind.EMBEDDED:
        return AssetEntry(card_id, content_hash, source_format, target_format, data=reader.raw())
    if kind == AssetKind.EXTERNAL:
        return AssetEntry(
            card_id, content_hash, source_format, target_format, reference=reader.text()
        )
    raise DatasetFormatError("Unknown asset kind", detail=f"kind {kind}")


def encode_payload(cards: Sequence[Card], assets: Iterable[AssetEntry]) -> bytes:
    """Encode the uncompressed card and asset tables."""
    writer = _Writer()
    writer.u32(len(cards))
    for card in cards:
        _encode_card(writer, card)

    entries = sorted(assets, key=lambda entry: entry.card_id)
    writer.u32(len(entries))
    for entry in entries:
        _encode_asset(writer, entry)
    return writer.getvalue()


def decode_payload(data: bytes) -> tuple[tuple[Card, ...], dict[int, AssetEntry]]:
    reader = _Reader(data)
    cards = tuple(_decode_card(reader) for _ in range(reader.u32()))
    entries = [_decode_asset(reader) for _ in range(reader.u32())]
    if not reader.exhausted:
        raise DatasetFormatError("Dataset payload has trailing bytes")
    return cards, {entry.card_id: entry for entry in entries}


# =============================================================================
# COMPACTION
# =============================================================================


def _check_encodable(cards: Sequence[Card]) -> None:
    seen: set[int] = set()
    for card in cards:
        if card.id in seen:
            raise CompactionError("Duplicate card id in catalog", detail=f"id {card.id}")
        seen.add(card.id)
        if not 0 <= card.id <= 0xFFFFFFFF:
            raise CompactionError("Card id does not fit in u32", detail=f"id {card.id}")


def compact(
    cards: Iterable[Card],
    assets: Mapping[int, ArtworkAsset],
    *,
    artwork_mode: ArtworkMode = "external",
) -> CompactedDataset:
    """
    Serialize and compress a canonical catalog.

    Cards flagged by the normalizer are included as-is. Assets for ids
    that are not in `cards` are ignored.

    Args:
        cards: Canonical cards; re-sorted by id here
        assets: Transcoded artwork keyed by card id
        artwork_mode: "embed" stores image bytes in the blob, "external"
            stores a reference to images/<content_hash>.webp

    Returns:
        CompactedDataset ready to be written

    Raises:
        CompactionError: Empty catalog, duplicate ids, or unencodable values
        ChecksumError: Checksum could not be computed
    """
    ordered = tuple(sorted(cards, key=lambda card: card.id))
    if not ordered:
        raise CompactionError("Refusing to write an empty dataset")
    _check_encodable(ordered)

    entries: dict[int, AssetEntry] = {}
    for card in ordered:
        asset = assets.get(card.id)
        if asset is None:
            continue
        entries[card.id] = AssetEntry(
            card_id=card.id,
            content_hash=asset.content_hash,
            source_format=asset.source_format,
            target_format=asset.target_format,
            data=asset.data if artwork_mode == "embed" else None,
            reference=(
                artwork_reference(asset.content_hash) if artwork_mode == "external" else None
            ),
        )

    try:
        raw = encode_payload(ordered, entries.values())
    except (struct.error, KeyError, UnicodeEncodeError) as e:
        raise CompactionError("Card table could not be encoded", detail=str(e)) from e

    payload = lzma.compress(
        raw, format=lzma.FORMAT_XZ, check=lzma.CHECK_CRC64, filters=LZMA_FILTERS
    )

    try:
        checksum = payload_checksum(payload)
    except (ValueError, TypeError, MemoryError) as e:
        raise ChecksumError(str(e)) from e

    logger.info(
        "Compacted %d cards and %d assets: %d bytes raw, %d bytes compressed",
        len(ordered),
        len(entries),
        len(raw),
        len(payload),
    )
    return CompactedDataset(
        version=FORMAT_VERSION,
        cards=ordered,
        assets=entries,
        payload=payload,
        checksum=checksum,
    )


def decode_dataset(blob: bytes) -> CompactedDataset:
    """
    Validate and decode a dataset blob.

    The header is checked (magic, version, checksum) before anything is
    decompressed, and the decoded card count must match the header.

    Raises:
        DatasetFormatError: If the blob must not be loaded
    """
    if len(blob) < HEADER.size:
        raise DatasetFormatError("Dataset is shorter than its header", detail=f"{len(blob)} bytes")

    magic, version, record_count, checksum = HEADER.unpack_from(blob)
    if magic != MAGIC:
        raise DatasetFormatError("Not a card dataset", detail=f"magic {magic!r}")
    if version != FORMAT_VERSION:
        raise DatasetFormatError(
            "Unsupported dataset format version",
            detail=f"found {version}, expected {FORMAT_VERSION}",
        )

    payload = blob[HEADER.size :]
    actual = payload_checksum(payload)
    if actual != checksum:
        raise DatasetFormatError(
            "Dataset checksum mismatch",
            detail=f"header {checksum:016x}, payload {actual:016x}",
        )

    try:
        raw = lzma.decompress(payload, format=lzma.FORMAT_XZ)
    except lzma.LZMAError as e:
        raise DatasetFormatError("Dataset payload could not be decompressed", detail=str(e)) from e

    cards, assets = decode_payload(raw)
    if len(cards) != record_count:
        raise DatasetFormatError(
            "Dataset record count mismatch",
            detail=f"header {record_count}, payload {len(cards)}",
        )

    return CompactedDataset(
        version=version,
        cards=cards,
        assets=assets,
        payload=payload,
        checksum=checksum,
    )


def load_dataset(path: Path) -> CompactedDataset:
    return decode_dataset(path.read_bytes())


# =============================================================================
# ATOMIC OUTPUT
# =============================================================================


def _atomic_write(
    path: Path, data: bytes, validate: Callable[[Path], None] | None = None
) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if validate is not None:
            validate(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def write_dataset(path: Path, dataset: CompactedDataset) -> int:
    """
    Atomically write a dataset to `path`.

    The blob is written to a temporary file in the target directory,
    synced, read back and fully decoded before it replaces `path`.

    Returns:
        Number of bytes written

    Raises:
        CompactionError: If the written file does not decode to the same cards
    """
    blob = dataset.to_bytes()

    def validate(tmp_path: Path) -> None:
        try:
            written = load_dataset(tmp_path)
        except DatasetFormatError as e:
            raise CompactionError("Written dataset failed validation", detail=e.message) from e
        if written.cards != dataset.cards:
            raise CompactionError("Written dataset does not match the compacted cards")

    _atomic_write(path, blob, validate)
    logger.info("Wrote dataset %s (%d bytes)", path, len(blob))
    return len(blob)


def write_artwork_files(directory: Path, assets: Iterable[ArtworkAsset]) -> int:
    """
    Write externally hosted artwork as <directory>/images/<content_hash>.webp.

    Existing files are left alone: a file name fixes its content, and the
    dataset already on disk may still reference it.

    Returns:
        Number of new files written
    """
    count = 0
    for asset in assets:
        path = directory / artwork_reference(asset.content_hash)
        if path.exists():
            continue
        _atomic_write(path, asset.data)
        count += 1
    return count
