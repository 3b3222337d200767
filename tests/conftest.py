import io
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from cardforge.config import Settings

CARD_INFO_URL = "https://db.test/api/v7/cardinfo.php"
VERSION_URL = "https://db.test/api/v7/checkDBVer.php"
ARTWORK_URL_TEMPLATE = "https://images.test/cards_cropped/{id}.jpg"


def artwork_url(card_id: int) -> str:
    return ARTWORK_URL_TEMPLATE.format(id=card_id)


def make_record(card_id: int, **fields: Any) -> dict[str, Any]:
    """Minimal cardinfo.php record with one cropped artwork image."""
    record: dict[str, Any] = {
        "id": card_id,
        "name": f"Card {card_id}",
        "type": "Spell Card",
        "race": "Normal",
        "desc": "Draw 2 cards.",
        "card_images": [{"id": card_id, "image_url_cropped": artwork_url(card_id)}],
    }
    record.update(fields)
    return record


@pytest.fixture
def sample_records() -> list[dict[str, Any]]:
    """A small catalog covering monsters, spells, traps and a token."""
    return [
        make_record(
            89631139,
            name="Blue-Eyes White Dragon",
            type="Normal Monster",
            race="Dragon",
            attribute="LIGHT",
            archetype="Blue-Eyes",
            desc="This legendary dragon is a powerful engine of destruction.",
            atk=3000,
            level=8,
            card_sets=[
                {"set_code": "LOB-001", "set_rarity": "Ultra Rare"},
                {"set_code": "SDK-001", "set_rarity": "Ultra Rare"},
            ],
            card_images=[
                {"id": 89631139, "image_url_cropped": artwork_url(89631139)},
                {"id": 89631140, "image_url_cropped": artwork_url(89631140)},
            ],
            **{"def": 2500},
        ),
        make_record(
            55144522,
            name="Pot of Greed",
            race="Normal",
            banlist_info={"ban_tcg": "Banned"},
        ),
        make_record(
            44095762,
            name="Mirror Force",
            type="Trap Card",
            desc="Destroy all your opponent's Attack Position monsters.",
        ),
        make_record(
            1861629,
            name="Decode Talker",
            type="Link Monster",
            race="Cyberse",
            attribute="DARK",
            atk=2300,
            linkval=3,
            linkmarkers=["Top", "Bottom-Left", "Bottom-Right"],
        ),
        make_record(73915052, name="Sheep Token", type="Token"),
    ]


@pytest.fixture
def jpeg_bytes() -> bytes:
    """A portrait JPEG shaped like a cropped card artwork."""
    image = Image.new("RGB", (168, 200), color=(180, 40, 40))
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG")
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings pointing every path into tmp_path, with no backoff delays."""
    return Settings(
        catalog_url=CARD_INFO_URL,
        version_url=VERSION_URL,
        artwork_url_template=ARTWORK_URL_TEMPLATE,
        requests_per_second=1000.0,
        max_concurrency=4,
        max_attempts=3,
        backoff_base=0.0,
        backoff_max=0.0,
        cache_dir=tmp_path / "cache",
        output_path=tmp_path / "dist" / "cards.bin",
        show_progress=False,
    )
