"""Script to load the token catalog from collection metadata.

Reads one ``<token_num>.json`` metadata file per token, maps each image URL
to its mint address through a two-column CSV (token_mint_addr, image_url)
and upserts tokens with their traits. An optional trait groups CSV
(group, type_id, type_name, category) then names trait types and assigns
their spatial groups and purpose classes.

Usage:
    python ingest_catalog.py --metadata metadata --mints logs/mint_to_image.csv \
        [--groups logs/trait_groups.csv]
"""

import argparse
import asyncio
import csv
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from catalog import CatalogManager
from config import load_settings
from database import create_pool, close_pool

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

GROUP_COLUMNS = ('group', 'type_id', 'type_name', 'category')


def load_image_to_mint(csv_path: Path) -> Dict[str, str]:
    """Map image URL to mint address; the header row is optional."""
    mapping = {}
    with open(csv_path, newline='', encoding='utf-8') as f:
        for row in csv.reader(f):
            if len(row) < 2 or row[0].strip() == 'token_mint_addr':
                continue
            mint, image = row[0].strip(), row[1].strip()
            if mint and image:
                mapping[image] = mint
    return mapping


def token_from_metadata(token_num: int, metadata: Dict[str, Any],
                        image_to_mint: Dict[str, str]) -> Dict[str, Any]:
    """Build an ingestible token from one metadata document.

    Raises:
        KeyError: If there is no image or the image has no mint mapping
    """
    if not isinstance(metadata, dict):
        raise KeyError(f"metadata for token {token_num} is not an object")
    files = (metadata.get('properties') or {}).get('files') or [{}]
    image = metadata.get('image') or files[0].get('uri')
    if not image:
        raise KeyError(f"no image URL in metadata for token {token_num}")
    if image not in image_to_mint:
        raise KeyError(f"no mint mapping for image {image}")

    name = metadata.get('name')
    traits = [
        {'type': attr['trait_type'].strip(), 'value': attr['value'].strip()}
        for attr in metadata.get('attributes') or []
        if isinstance(attr, dict)
        and isinstance(attr.get('trait_type'), str)
        and isinstance(attr.get('value'), str)
    ]
    return {
        'token_mint_addr': image_to_mint[image],
        'token_num': token_num,
        'name': name if isinstance(name, str) else None,
        'image_url': image,
        'traits': traits,
    }


def collect_tokens(metadata_dir: Path,
                   image_to_mint: Dict[str, str]) -> Tuple[List[Dict[str, Any]], int]:
    """Read every numbered metadata file in ``metadata_dir``.

    Returns:
        The tokens, ordered by token number, and how many files were skipped
    """
    tokens = []
    skipped = 0
    paths = sorted(
        (p for p in metadata_dir.glob('*.json') if p.stem.isdigit()),
        key=lambda p: int(p.stem)
    )
    for path in paths:
        try:
            metadata = json.loads(path.read_text(encoding='utf-8'))
            tokens.append(token_from_metadata(int(path.stem), metadata, image_to_mint))
        except (ValueError, KeyError) as e:
            logger.warning(f"Skipping {path.name}: {e}")
            skipped += 1
    return tokens, skipped


def read_trait_groups(csv_path: Path) -> List[Dict[str, Any]]:
    """Read trait type groups; rows with a non-numeric type_id are ignored.

    Raises:
        ValueError: If a required column is missing
    """
    with open(csv_path, newline='', encoding='utf-8') as f:
        reader = csv.DictReader(f)
        fields = [name.strip().lower() for name in reader.fieldnames or []]
        missing = [column for column in GROUP_COLUMNS if column not in fields]
        if missing:
            raise ValueError(f"Trait groups CSV missing columns: {', '.join(missing)}")
        reader.fieldnames = fields

        rows = []
        for row in reader:
            type_id = (row['type_id'] or '').strip()
            if not type_id.isdigit():
                continue
            rows.append({
                'type_id': int(type_id),
                'type_name': (row['type_name'] or '').strip(),
                'group': (row['group'] or '').strip(),
                'category': (row['category'] or '').strip(),
            })
    return rows


async def ingest(manager: CatalogManager, metadata_dir: Path, mints_csv: Path,
                 groups_csv: Optional[Path] = None) -> Dict[str, int]:
    """Load tokens and, if given, trait groups into the catalog."""
    image_to_mint = load_image_to_mint(mints_csv)
    logger.info(f"Loaded {len(image_to_mint)} mint mappings")

    tokens, skipped = collect_tokens(metadata_dir, image_to_mint)
    ingested = await manager.ingest_tokens(tokens)

    grouped = 0
    if groups_csv is not None:
        grouped = await manager.update_trait_type_groups(read_trait_groups(groups_csv))

    trait_types = await manager.list_trait_types()
    ungrouped = [t['name'] for t in trait_types if not t['spatial_group']]
    if ungrouped:
        logger.warning(f"Trait types without a group: {', '.join(ungrouped)}")

    return {
        'tokens': ingested,
        'skipped': skipped,
        'trait_types': len(trait_types),
        'grouped': grouped,
    }


async def main(args: argparse.Namespace) -> None:
    settings = load_settings()
    pool = await create_pool(settings['db_url'])
    try:
        summary = await ingest(
            CatalogManager(pool),
            Path(args.metadata),
            Path(args.mints),
            Path(args.groups) if args.groups else None
        )
        logger.info(
            f"Catalog ingest finished: {summary['tokens']} tokens, "
            f"{summary['skipped']} skipped, {summary['trait_types']} trait types, "
            f"{summary['grouped']} grouped"
        )
    finally:
        await close_pool(pool)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load the token catalog")
    parser.add_argument('--metadata', default='metadata', help="Directory of <n>.json files")
    parser.add_argument('--mints', default='logs/mint_to_image.csv', help="Mint to image CSV")
    parser.add_argument('--groups', help="Trait groups CSV")
    try:
        asyncio.run(main(parser.parse_args()))
    except KeyboardInterrupt:
        print("\nIngest interrupted by user")
