"""Tests for the recycling centre seed script."""

import io

import pytest

from config import DEFAULTS, validate_settings
from seed_recycling_centers import SeedError, main, parse_row, read_centers, seed

CSV = (
    "name,address,city,county,location,operator,facilityType,wasteTypes,poBox,latitude,longitude\n"
    "Green Depot,1 Mill Rd,Nairobi,Nairobi,Industrial Area,GreenCo,depot,Plastic; Paper,,-1.30,36.85\n"
    ",2 Mill Rd,Nairobi,,,,,glass,,,\n"
    "Coast Recyclers,9 Port Ave,Mombasa,,,,,\"metal,glass\",PO 12,bad,39.66\n"
)


def test_parse_row():
    center = parse_row({
        'name': ' Green Depot ', 'address': '1 Mill Rd', 'city': 'Nairobi',
        'wasteTypes': 'Plastic; PAPER,', 'latitude': '-1.3', 'county': ''
    })
    assert center['name'] == 'Green Depot'
    assert center['waste_types'] == ['plastic', 'paper']
    assert center['latitude'] == -1.3
    assert center['county'] is None

    with pytest.raises(ValueError):
        parse_row({'name': 'X', 'address': '', 'city': 'Nairobi'})


def test_read_centers_skips_incomplete_rows():
    centers = read_centers(io.StringIO(CSV))
    assert [c['name'] for c in centers] == ['Green Depot', 'Coast Recyclers']
    assert centers[1]['waste_types'] == ['metal', 'glass']
    assert centers[1]['latitude'] is None
    assert centers[1]['longitude'] == 39.66


@pytest.mark.asyncio
async def test_seed_replaces_existing_centers(storage):
    await seed(storage, read_centers(io.StringIO(CSV)))
    assert await seed(storage, read_centers(io.StringIO(CSV))[:1]) == 1

    centers = await storage.get_recycling_centers()
    assert [c.name for c in centers] == ['Green Depot']


@pytest.mark.asyncio
async def test_main_refuses_memory_backend(tmp_path):
    settings = validate_settings({**DEFAULTS, 'storage_backend': 'memory'})
    with pytest.raises(SeedError) as exc:
        await main(str(tmp_path / 'missing.csv'), settings)
    assert 'postgres' in str(exc.value)
