"""Dashboard aggregation of environmental impact per role."""

import calendar
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from models import Collection, CollectionStatus, ImpactTotals, InterestStatus, User, UserRole
from storage import Storage
from . import COMPLETION_IMPACT_FACTORS, DEFAULT_WASTE_AMOUNT

logger = logging.getLogger(__name__)

MONTHS_SHOWN = 6


def effective_amount(collection: Collection) -> float:
    """Collected kg if completed, otherwise the default estimate."""
    if collection.status == CollectionStatus.COMPLETED.value and collection.waste_amount:
        return collection.waste_amount
    return DEFAULT_WASTE_AMOUNT


def _totals_from_amounts(amounts: List[float]) -> ImpactTotals:
    total = sum(amounts)
    return ImpactTotals(
        water_saved=total * COMPLETION_IMPACT_FACTORS['water_saved'],
        co2_reduced=total * COMPLETION_IMPACT_FACTORS['co2_reduced'],
        trees_equivalent=total * COMPLETION_IMPACT_FACTORS['trees_equivalent'],
        energy_conserved=total * COMPLETION_IMPACT_FACTORS['energy_conserved'],
        waste_amount=total
    )


async def _entries(storage: Storage, user: User) -> List[Tuple[Collection, float, datetime]]:
    """(collection, kg, date) rows counted on the user's dashboard."""
    entries = []

    if user.role == UserRole.RECYCLER.value:
        for interest in await storage.get_interests_by_user(user.id):
            if interest.status != InterestStatus.COMPLETED.value:
                continue
            collection = await storage.get_collection(interest.collection_id)
            if collection is None:
                continue
            amount = interest.amount_requested or effective_amount(collection)
            entries.append((collection, amount, interest.updated_at or interest.created_at))
        return entries

    if user.role == UserRole.COLLECTOR.value:
        collections = await storage.get_collections_by_collector(user.id)
    else:
        collections = await storage.get_collections_by_user(user.id)

    for collection in collections:
        if collection.status == CollectionStatus.CANCELLED.value:
            continue
        when = collection.completed_date or collection.scheduled_date
        entries.append((collection, effective_amount(collection), when))
    return entries


async def get_impact_summary(storage: Storage, user: User) -> ImpactTotals:
    """Total impact for the dashboard header.

    Households and organizations read their impact ledger. Collectors are
    credited for the collections they completed and recyclers for the
    material they acquired.
    """
    if user.role in (UserRole.HOUSEHOLD.value, UserRole.ORGANIZATION.value):
        return await storage.get_total_impact_by_user(user.id)

    entries = await _entries(storage, user)
    if user.role == UserRole.COLLECTOR.value:
        entries = [e for e in entries if e[0].status == CollectionStatus.COMPLETED.value]
    return _totals_from_amounts([amount for _, amount, _ in entries])


def _last_months(now: datetime, count: int) -> List[Tuple[int, int]]:
    year, month = now.year, now.month
    months = []
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(months))


async def get_monthly_impact(
    storage: Storage,
    user: User,
    now: Optional[datetime] = None
) -> List[Dict[str, Any]]:
    """Waste, CO2 and collection counts for each of the last six months."""
    now = now or datetime.now(timezone.utc)
    months = _last_months(now, MONTHS_SHOWN)
    buckets = {
        key: {'name': calendar.month_abbr[key[1]], 'wasteCollected': 0.0, 'co2Reduced': 0.0, 'collections': 0}
        for key in months
    }

    for _, amount, when in await _entries(storage, user):
        if when is None:
            continue
        bucket = buckets.get((when.year, when.month))
        if bucket is None:
            continue
        bucket['wasteCollected'] += amount
        bucket['co2Reduced'] += amount * COMPLETION_IMPACT_FACTORS['co2_reduced']
        bucket['collections'] += 1

    result = []
    for key in months:
        bucket = buckets[key]
        bucket['wasteCollected'] = round(bucket['wasteCollected'], 2)
        bucket['co2Reduced'] = round(bucket['co2Reduced'], 2)
        result.append(bucket)
    return result


async def get_waste_type_breakdown(storage: Storage, user: User) -> List[Dict[str, Any]]:
    """Kilograms per waste type, largest first."""
    totals: Dict[str, float] = {}
    for collection, amount, _ in await _entries(storage, user):
        totals[collection.waste_type] = totals.get(collection.waste_type, 0.0) + amount

    return [
        {'name': waste_type, 'value': round(value, 2)}
        for waste_type, value in sorted(totals.items(), key=lambda item: item[1], reverse=True)
    ]


__all__ = [
    'effective_amount',
    'get_impact_summary',
    'get_monthly_impact',
    'get_waste_type_breakdown'
]
