from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from cardforge.parsers.ygoprodeck import ARTWORK_URL_TEMPLATE, CARD_INFO_URL, VERSION_URL


class Settings(BaseSettings):
    """Pipeline settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CARDFORGE_")

    catalog_url: str = CARD_INFO_URL
    version_url: str = VERSION_URL
    artwork_url_template: str = ARTWORK_URL_TEMPLATE
    user_agent: str = "cardforge/1.0"

    # Published YGOPRODeck limit is 20/s; stay under it
    requests_per_second: float = 15.0
    max_concurrency: int = 16

    max_attempts: int = 5
    backoff_base: float = 0.5
    backoff_max: float = 30.0
    request_timeout: float = 30.0

    cache_dir: Path = Path("target/cache")
    output_path: Path = Path("dist/cards.bin")

    # "external" writes images/<content_hash>.webp next to the dataset, "embed" stores bytes in it
    artwork_mode: Literal["external", "embed"] = "external"
    image_size: int = 96
    image_quality: int = 80

    version_check_hours: float = 24.0
    show_progress: bool = True

    @property
    def artwork_cache_dir(self) -> Path:
        return self.cache_dir / "artwork"

    @property
    def catalog_cache_path(self) -> Path:
        return self.cache_dir / "card_info.json"


# =============================================================================
# DATASET LAYOUT
# =============================================================================

# Directory (relative to the dataset file) for externally hosted artwork
IMAGE_DIRECTORY = "images"

# File ending for transcoded artwork
IMAGE_FILE_ENDING = "webp"
