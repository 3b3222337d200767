"""
Catalog Normalization Service.

Maps raw catalog records to canonical, deduplicated cards.

INVARIANTS:
1. normalize() is TOTAL: malformed input never raises, it produces
   sentinel values plus a Diagnostic
2. Records sharing an id merge into ONE card; for each field the latest
   non-sentinel value wins, set memberships are unioned
3. Output is sorted by ascending id; identical input gives identical output
4. "?" stats are kept as STAT_VARIABLE, never coerced to a number
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from cardforge.models.card import (
    STAT_UNKNOWN,
    STAT_VARIABLE,
    UNKNOWN_TEXT,
    Card,
    CardCategory,
    CardLimit,
    CatalogRecord,
    SetMembership,
)
from cardforge.models.failure import Diagnostic, DiagnosticKind
from cardforge.parsers.ygoprodeck import (
    ARTWORK_URL_TEMPLATE,
    EXCLUDED_TYPES,
    resolve_artwork_url,
)

logger = logging.getLogger(__name__)

# Stats are stored as i16 in the dataset
STAT_MIN = -(2**15)
STAT_MAX = 2**15 - 1

# Ids are stored as u32
ID_MAX = 2**32 - 1

BAN_STATUS = {
    "Banned": CardLimit.BANNED,
    "Limited": CardLimit.LIMITED,
    "Semi-Limited": CardLimit.SEMI_LIMITED,
}

# Scalar fields merged with "latest non-sentinel wins"
SCALAR_FIELDS = (
    "name",
    "category",
    "card_type",
    "race",
    "attribute",
    "archetype",
    "description",
    "atk",
    "def_",
    "level",
    "link_value",
    "pendulum_scale",
    "limit",
    "artwork_url",
)


@dataclass
class NormalizationResult:
    """Result of normalizing a catalog."""

    cards: list[Card]
    """Canonical cards sorted by id."""

    diagnostics: list[Diagnostic]
    """Record-level diagnostics first, then per-card diagnostics in id order."""

    excluded: int = 0
    """Number of records dropped (non-playable types or no usable id)."""


@dataclass
class _Draft:
    """Partially extracted card; fields absent from the record stay None."""

    id: int
    fields: dict[str, Any] = field(default_factory=dict)
    sets: list[SetMembership] = field(default_factory=list)
    alternate_ids: list[int] = field(default_factory=list)
    link_markers: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)


def _is_sentinel(value: Any) -> bool:
    if value is None or value is CardCategory.UNKNOWN:
        return True
    if isinstance(value, str):
        return value == UNKNOWN_TEXT
    if isinstance(value, int):
        return value == STAT_UNKNOWN
    return False


def _parse_id(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and value.strip().isdecimal():
        value = int(value.strip())
    if isinstance(value, int) and 0 < value <= ID_MAX:
        return value
    return None


class _Extractor:
    """Extracts one record into a _Draft, collecting diagnostics."""

    def __init__(self, record: CatalogRecord, card_id: int, artwork_template: str) -> None:
        self.record = record
        self.draft = _Draft(id=card_id)
        self.artwork_template = artwork_template

    def note(self, field_name: str, kind: DiagnosticKind, message: str) -> None:
        self.draft.diagnostics.append(
            Diagnostic(card_id=self.draft.id, field=field_name, kind=kind, message=message)
        )

    def clean(self, key: str, value: str) -> str:
        """Replace code points UTF-8 cannot encode, such as lone surrogates."""
        encoded = value.encode("utf-8", "replace").decode("utf-8")
        if encoded != value:
            self.note(key, DiagnosticKind.UNEXPECTED_VALUE, f"Unencodable text: {value!r}")
        return encoded

    def text(self, key: str) -> str | None:
        value = self.record.get(key)
        if value is None:
            return None
        if isinstance(value, str):
            return self.clean(key, value).strip()
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        self.note(key, DiagnosticKind.UNEXPECTED_VALUE, f"Unexpected value: {value!r}")
        return UNKNOWN_TEXT

    def stat(self, key: str) -> int | None:
        value = self.record.get(key)
        if value is None:
            return None

        parsed: int | None = None
        if isinstance(value, bool):
            parsed = None
        elif isinstance(value, int):
            parsed = value
        elif isinstance(value, float) and value.is_integer():
            parsed = int(value)
        elif isinstance(value, str):
            value = self.clean(key, value)
            stripped = value.strip()
            if stripped == "?":
                return STAT_VARIABLE
            try:
                parsed = int(stripped)
            except ValueError:
                parsed = None

        if parsed is None:
            self.note(key, DiagnosticKind.UNKNOWN_VALUE, f'Unknown value: "{value}"')
            return STAT_UNKNOWN
        if not STAT_MIN <= parsed <= STAT_MAX or parsed in (STAT_VARIABLE, STAT_UNKNOWN):
            self.note(key, DiagnosticKind.UNEXPECTED_VALUE, f"Unexpected value: {value!r}")
            return STAT_UNKNOWN
        return parsed

    def category(self, card_type: str | None) -> CardCategory | None:
        if card_type is None or card_type == UNKNOWN_TEXT:
            return None
        if card_type.endswith("Monster"):
            return CardCategory.MONSTER
        if card_type == "Spell Card":
            return CardCategory.SPELL
        if card_type == "Trap Card":
            return CardCategory.TRAP
        self.note("type", DiagnosticKind.UNKNOWN_VALUE, f'Unknown value: "{card_type}"')
        return CardCategory.UNKNOWN

    def limit(self) -> CardLimit | None:
        info = self.record.get("banlist_info")
        if info is None:
            return None
        if not isinstance(info, Mapping):
            self.note(
                "banlist_info", DiagnosticKind.UNEXPECTED_VALUE, f"Unexpected value: {info!r}"
            )
            return None
        status = info.get("ban_tcg")
        if status is None:
            return None
        if isinstance(status, str):
            status = self.clean("ban_tcg", status)
        if not isinstance(status, str) or status not in BAN_STATUS:
            self.note("ban_tcg", DiagnosticKind.UNKNOWN_VALUE, f'Unknown value: "{status}"')
            return None
        return BAN_STATUS[status]

    def sets(self) -> list[SetMembership]:
        entries = self.record.get("card_sets")
        if entries is None:
            return []
        if not isinstance(entries, list):
            self.note(
                "card_sets", DiagnosticKind.UNEXPECTED_VALUE, f"Unexpected value: {entries!r}"
            )
            return []

        result: list[SetMembership] = []
        for entry in entries:
            code = entry.get("set_code") if isinstance(entry, Mapping) else None
            if not isinstance(code, str) or not code.strip():
                self.note("card_sets", DiagnosticKind.MISSING_FIELD, "Set entry without set_code")
                continue
            rarity = entry.get("set_rarity")
            result.append(
                SetMembership(
                    set_code=self.clean("set_code", code).strip(),
                    rarity=(
                        self.clean("set_rarity", rarity).strip()
                        if isinstance(rarity, str)
                        else UNKNOWN_TEXT
                    ),
                )
            )
        return result

    def alternate_ids(self) -> list[int]:
        images = self.record.get("card_images")
        if not isinstance(images, list):
            return []
        ids = (_parse_id(image.get("id")) for image in images if isinstance(image, Mapping))
        return [i for i in ids if i is not None and i != self.draft.id]

    def link_markers(self) -> list[str]:
        markers = self.record.get("linkmarkers")
        if markers is None:
            return []
        if not isinstance(markers, list):
            self.note(
                "linkmarkers", DiagnosticKind.UNEXPECTED_VALUE, f"Unexpected value: {markers!r}"
            )
            return []
        return [
            self.clean("linkmarkers", m).strip()
            for m in markers
            if isinstance(m, str) and m.strip()
        ]

    def artwork_url(self) -> str | None:
        url = resolve_artwork_url(self.record, self.draft.id, self.artwork_template)
        return self.clean("card_images", url) if url is not None else None

    def extract(self) -> _Draft:
        card_type = self.text("type")
        self.draft.fields = {
            "name": self.text("name"),
            "category": self.category(card_type),
            "card_type": card_type,
            "race": self.text("race"),
            "attribute": self.text("attribute"),
            "archetype": self.text("archetype"),
            "description": self.text("desc"),
            "atk": self.stat("atk"),
            "def_": self.stat("def"),
            "level": self.stat("level"),
            "link_value": self.stat("linkval"),
            "pendulum_scale": self.stat("scale"),
            "limit": self.limit(),
            "artwork_url": self.artwork_url(),
        }
        self.draft.sets = self.sets()
        self.draft.alternate_ids = self.alternate_ids()
        self.draft.link_markers = self.link_markers()
        return self.draft


def _merge(existing: _Draft, update: _Draft) -> None:
    """Merge `update` (observed later) into `existing` in place."""
    for name in SCALAR_FIELDS:
        new = update.fields.get(name)
        old = existing.fields.get(name)
        if not _is_sentinel(new) or old is None:
            existing.fields[name] = new

    for membership in update.sets:
        if membership not in existing.sets:
            existing.sets.append(membership)
    for alternate in update.alternate_ids:
        if alternate not in existing.alternate_ids:
            existing.alternate_ids.append(alternate)
    if update.link_markers:
        existing.link_markers = list(update.link_markers)
    existing.diagnostics.extend(update.diagnostics)


def _finalize(draft: _Draft) -> Card:
    """Build the Card, filling required-but-missing fields with sentinels."""
    values = dict(draft.fields)
    diagnostics = list(draft.diagnostics)

    def require(name: str, api_name: str, sentinel: Any) -> None:
        if values.get(name) is None:
            values[name] = sentinel
            diagnostics.append(
                Diagnostic(
                    card_id=draft.id,
                    field=api_name,
                    kind=DiagnosticKind.MISSING_FIELD,
                    message="Field not present",
                )
            )

    require("name", "name", UNKNOWN_TEXT)
    require("card_type", "type", UNKNOWN_TEXT)
    require("category", "type", CardCategory.UNKNOWN)

    card_type = values["card_type"]
    if values["category"] is CardCategory.MONSTER:
        require("atk", "atk", STAT_UNKNOWN)
        if "Link" in card_type:
            require("link_value", "linkval", STAT_UNKNOWN)
        else:
            require("def_", "def", STAT_UNKNOWN)
            require("level", "level", STAT_UNKNOWN)
        if "Pendulum" in card_type:
            require("pendulum_scale", "scale", STAT_UNKNOWN)

    if values["artwork_url"] is None:
        diagnostics.append(
            Diagnostic(
                card_id=draft.id,
                field="card_images",
                kind=DiagnosticKind.MISSING_FIELD,
                message="No artwork reference",
            )
        )

    return Card(
        id=draft.id,
        name=values["name"],
        category=values["category"],
        card_type=card_type,
        race=values["race"] or None,
        attribute=values["attribute"] or None,
        archetype=values["archetype"] or None,
        description=values["description"] or UNKNOWN_TEXT,
        atk=values["atk"],
        def_=values["def_"],
        level=values["level"],
        link_value=values["link_value"],
        link_markers=tuple(draft.link_markers),
        pendulum_scale=values["pendulum_scale"],
        limit=values["limit"] or CardLimit.UNLIMITED,
        sets=tuple(draft.sets),
        alternate_ids=tuple(sorted(draft.alternate_ids)),
        artwork_url=values["artwork_url"],
        diagnostics=tuple(diagnostics),
    )


def normalize(
    records: Iterable[CatalogRecord],
    artwork_url_template: str = ARTWORK_URL_TEMPLATE,
) -> NormalizationResult:
    """
    Normalize raw catalog records into canonical cards.

    Args:
        records: Raw records in observation order (later records win merges)
        artwork_url_template: Fallback artwork URL, formatted with {id}

    Returns:
        NormalizationResult with id-sorted cards and all diagnostics
    """
    drafts: dict[int, _Draft] = {}
    diagnostics: list[Diagnostic] = []
    excluded: set[int] = set()
    dropped = 0

    for record in records:
        if not isinstance(record, Mapping):
            dropped += 1
            diagnostics.append(
                Diagnostic(
                    None, "record", DiagnosticKind.UNEXPECTED_VALUE, f"Not an object: {record!r}"
                )
            )
            continue

        card_id = _parse_id(record.get("id"))
        if card_id is None:
            dropped += 1
            id_kind = (
                DiagnosticKind.MISSING_FIELD
                if record.get("id") is None
                else DiagnosticKind.UNEXPECTED_VALUE
            )
            diagnostics.append(
                Diagnostic(
                    None,
                    "id",
                    id_kind,
                    f"No usable id (name={record.get('name')!r}, id={record.get('id')!r})",
                )
            )
            continue

        card_type = record.get("type")
        if isinstance(card_type, str) and card_type in EXCLUDED_TYPES:
            if card_id not in excluded:
                excluded.add(card_id)
                diagnostics.append(
                    Diagnostic(
                        card_id, "type", DiagnosticKind.EXCLUDED, f"Excluded type: {card_type}"
                    )
                )
            continue

        draft = _Extractor(record, card_id, artwork_url_template).extract()
        if card_id in drafts:
            _merge(drafts[card_id], draft)
        else:
            drafts[card_id] = draft

    cards = [_finalize(drafts[card_id]) for card_id in sorted(drafts)]
    for card in cards:
        diagnostics.extend(card.diagnostics)

    logger.info(
        "Normalized %d cards (%d records excluded, %d diagnostics)",
        len(cards),
        len(excluded) + dropped,
        len(diagnostics),
    )
    return NormalizationResult(
        cards=cards, diagnostics=diagnostics, excluded=len(excluded) + dropped
    )
