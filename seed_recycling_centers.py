"""Script to load the recycling centre directory from a CSV file.

The CSV must carry a header row with the columns:
name, address, city, county, location, operator, facilityType,
wasteTypes, poBox, latitude, longitude

``wasteTypes`` is a comma or semicolon separated list. Existing centres are
replaced.

Usage:
    python seed_recycling_centers.py centers.csv
"""

import argparse
import asyncio
import csv
import logging
import re
import sys
from typing import Any, Dict, Iterable, List, Optional

from config import settings_conf
from database import close, init_db
from storage import Storage, create_storage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('name', 'address', 'city')


def _optional(value: Optional[str]) -> Optional[str]:
    value = (value or '').strip()
    return value or None


def _coordinate(value: Optional[str]) -> Optional[float]:
    value = (value or '').strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring invalid coordinate: {value}")
        return None


def parse_row(row: Dict[str, str]) -> Dict[str, Any]:
    """Convert one CSV row into recycling centre fields.

    Raises:
        ValueError: If a required column is empty
    """
    for column in REQUIRED_COLUMNS:
        if not (row.get(column) or '').strip():
            raise ValueError(f"Missing {column}")

    waste_types = [
        w.strip().lower()
        for w in re.split(r'[;,]', row.get('wasteTypes') or '')
        if w.strip()
    ]
    return {
        'name': row['name'].strip(),
        'address': row['address'].strip(),
        'city': row['city'].strip(),
        'county': _optional(row.get('county')),
        'location': _optional(row.get('location')),
        'operator': _optional(row.get('operator')),
        'facility_type': _optional(row.get('facilityType')),
        'waste_types': waste_types,
        'po_box': _optional(row.get('poBox')),
        'latitude': _coordinate(row.get('latitude')),
        'longitude': _coordinate(row.get('longitude'))
    }


def read_centers(lines: Iterable[str]) -> List[Dict[str, Any]]:
    """Parse CSV lines, skipping rows that lack required columns."""
    centers = []
    for number, row in enumerate(csv.DictReader(lines), start=2):
        try:
            centers.append(parse_row(row))
        except ValueError as e:
            logger.warning(f"Skipping line {number}: {e}")
    return centers


async def seed(storage: Storage, centers: List[Dict[str, Any]]) -> int:
    """Replace the stored centres with ``centers``.

    Returns:
        Number of centres created
    """
    async with storage.transaction():
        removed = await storage.delete_recycling_centers()
        if removed:
            logger.info(f"Removed {removed} existing recycling centers")
        for center in centers:
            await storage.create_recycling_center(center)
    return len(centers)


class SeedError(Exception):
    """Raised when the configured storage cannot keep seeded data."""
    pass


async def main(path: str, settings: Optional[Dict[str, Any]] = None):
    """Load the CSV at ``path`` into the configured PostgreSQL storage.

    Raises:
        SeedError: If the storage backend is not ``postgres``. The memory
            backend lives only as long as this process.
    """
    settings = settings or settings_conf
    if settings['storage_backend'] != 'postgres':
        raise SeedError(
            f"Cannot seed the '{settings['storage_backend']}' storage backend: its data is "
            "discarded when the script exits. Set storage_backend = postgres."
        )

    with open(path, newline='', encoding='utf-8') as f:
        centers = read_centers(f)
    logger.info(f"Parsed {len(centers)} recycling centers from {path}")

    storage = create_storage(settings)
    logger.info("Initializing database connection...")
    await init_db(settings['db_url'])

    try:
        created = await seed(storage, centers)
        print(f"\nSeeded {created} recycling centers")
        cities = sorted({c['city'] for c in centers})
        print(f"Cities: {', '.join(cities)}")
    except Exception as e:
        logger.error(f"Error in seed script: {e}")
        raise
    finally:
        await storage.close()
        await close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Load recycling centers from CSV")
    parser.add_argument('csv_path', help="Path to the recycling centers CSV file")
    args = parser.parse_args()
    try:
        asyncio.run(main(args.csv_path))
    except SeedError as e:
        logger.error(str(e))
        sys.exit(1)
