"""
Validate a dataset file and print what it contains.

Exits 0 if the file decodes cleanly and 1 if a loader would refuse it.
"""

import argparse
import logging
import sys
from collections import Counter
from pathlib import Path

from cardforge.models.failure import DatasetFormatError
from cardforge.services.compactor import AssetKind, CompactedDataset, load_dataset

logger = logging.getLogger(__name__)


def summarize(path: Path, dataset: CompactedDataset) -> str:
    categories = Counter(card.category.value for card in dataset.cards)
    kinds = Counter(entry.kind.name.lower() for entry in dataset.assets.values())
    flagged = sum(1 for card in dataset.cards if not card.has_artwork)

    lines = [
        f"{path}: format version {dataset.version}, checksum {dataset.checksum_hex}",
        f"Cards: {dataset.record_count} "
        + " ".join(f"{name}={count}" for name, count in sorted(categories.items())),
        f"Artwork: {len(dataset.assets)} entries "
        + " ".join(f"{name}={count}" for name, count in sorted(kinds.items())),
        f"Cards without artwork reference: {flagged}",
    ]

    missing = [
        entry.reference
        for entry in dataset.assets.values()
        if entry.kind == AssetKind.EXTERNAL
        and entry.reference is not None
        and not (path.parent / entry.reference).is_file()
    ]
    if missing:
        lines.append(f"External artwork files missing: {len(missing)}")
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Validate a compacted card dataset")
    parser.add_argument("path", type=Path, help="Dataset file to check")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        dataset = load_dataset(args.path)
    except FileNotFoundError:
        logger.error("Dataset %s does not exist", args.path)
        return 1
    except DatasetFormatError as e:
        logger.error("Dataset %s is invalid: %s (%s)", args.path, e.message, e.detail)
        return 1

    print(summarize(args.path, dataset), file=sys.stderr)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
