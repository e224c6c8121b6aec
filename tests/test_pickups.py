"""Tests for the collection lifecycle."""

import asyncio

import pytest
import pytest_asyncio

from pickups import (
    CollectionAlreadyClaimedError, CollectionForbiddenError, CollectionManager,
    CollectionNotFoundError, CollectionValidationError, InvalidTransitionError,
    calculate_points, can_view, round_points
)
from tests.conftest import FakeWebSocket, tomorrow


@pytest_asyncio.fixture
async def manager(storage, registry):
    return CollectionManager(storage, registry)


async def _request(manager, user, waste_type='plastic', **extra):
    collection, _, _ = await manager.create_collection(user, {
        'waste_type': waste_type,
        'scheduled_date': tomorrow(),
        'address': '1 Green Lane',
        **extra
    })
    return collection


async def _claimed(manager, owner, collector):
    collection = await _request(manager, owner)
    return await manager.claim_collection(collector, collection.id)


def test_round_points_half_up():
    assert round_points(2.5) == 3
    assert round_points(0.5) == 1
    assert round_points(2.4) == 2


@pytest.mark.parametrize("waste_type,amount,points", [
    ('plastic', 20, 20),
    ('general', 10, 5),
    ('hazardous', 3, 6),
    ('metal', 10, 12),
    ('paper', 5, 4),
])
def test_calculate_points(waste_type, amount, points):
    assert calculate_points(waste_type, amount) == points


@pytest.mark.asyncio
async def test_create_collection_awards_points(manager, storage, household):
    """A 20kg plastic request earns 20 points."""
    start = household.sustainability_score
    collection, points, total = await manager.create_collection(household, {
        'waste_type': 'plastic',
        'waste_amount': 20,
        'scheduled_date': tomorrow(),
        'address': '1 Green Lane'
    })

    assert points == 20
    assert total == start + 20
    assert collection.status == 'scheduled'
    assert collection.waste_amount is None
    assert collection.collector_id is None

    impacts = await storage.get_impacts_by_collection(collection.id)
    assert len(impacts) == 1
    assert impacts[0].water_saved == 1000
    assert impacts[0].co2_reduced == 40

    activity = (await storage.get_activities_by_user(household.id, 1))[0]
    assert activity.activity_type == 'collection_scheduled'
    assert activity.points == 20


@pytest.mark.asyncio
async def test_create_collection_defaults_to_ten_kg(manager, household):
    _, points, _ = await manager.create_collection(household, {
        'waste_type': 'hazardous', 'scheduled_date': tomorrow(), 'address': 'x'
    })
    assert points == 20


@pytest.mark.asyncio
async def test_create_collection_validation(manager, household, collector):
    with pytest.raises(CollectionForbiddenError):
        await _request(manager, collector)
    with pytest.raises(CollectionValidationError):
        await _request(manager, household, waste_type='uranium')
    with pytest.raises(CollectionValidationError):
        await _request(manager, household, status='completed')
    with pytest.raises(CollectionValidationError):
        await _request(manager, household, waste_amount=0)


@pytest.mark.asyncio
async def test_create_collection_notifies(manager, registry, household, collector, recycler):
    owner_ws, collector_ws, recycler_ws = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    registry.register(household.id, household.role, owner_ws)
    registry.register(collector.id, collector.role, collector_ws)
    registry.register(recycler.id, recycler.role, recycler_ws)

    collection = await _request(manager, household)

    assert len(collector_ws.frames('new_collection')) == 1
    assert collector_ws.frames('new_collection')[0]['data']['collection']['id'] == collection.id
    assert len(owner_ws.frames('collection_update')) == 1
    assert recycler_ws.sent == []


@pytest.mark.asyncio
async def test_claim_notifies_owner_once(manager, registry, household, collector):
    """Claiming sends exactly one collection_update naming the collector."""
    collection = await _request(manager, household)
    owner_ws = FakeWebSocket()
    registry.register(household.id, household.role, owner_ws)

    claimed = await manager.claim_collection(collector, collection.id)

    assert claimed.collector_id == collector.id
    updates = owner_ws.frames('collection_update')
    assert len(updates) == 1
    assert updates[0]['data']['collectorId'] == collector.id
    assert updates[0]['data']['collectorName'] == collector.full_name


@pytest.mark.asyncio
async def test_claim_lost_race(manager, household, collector, make_user):
    other = await make_user('dave', 'collector')
    collection = await _request(manager, household)

    results = await asyncio.gather(
        manager.claim_collection(collector, collection.id),
        manager.claim_collection(other, collection.id),
        return_exceptions=True
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, CollectionAlreadyClaimedError)]
    assert len(winners) == 1
    assert len(losers) == 1


@pytest.mark.asyncio
async def test_claim_is_idempotent_for_same_collector(manager, household, collector):
    claimed = await _claimed(manager, household, collector)
    again = await manager.claim_collection(collector, claimed.id)
    assert again.collector_id == collector.id


@pytest.mark.asyncio
async def test_claim_rejects_closed_and_missing(manager, household, collector):
    collection = await _request(manager, household)
    await manager.update_collection(household, collection.id, {'status': 'cancelled'})
    with pytest.raises(InvalidTransitionError):
        await manager.claim_collection(collector, collection.id)
    with pytest.raises(CollectionNotFoundError):
        await manager.claim_collection(collector, 999)
    with pytest.raises(CollectionForbiddenError):
        await manager.claim_collection(household, collection.id)


@pytest.mark.asyncio
async def test_claim_through_update(manager, household, collector):
    collection = await _request(manager, household)
    with pytest.raises(CollectionForbiddenError):
        await manager.update_collection(collector, collection.id, {'status': 'in_progress'})

    claimed = await manager.update_collection(collector, collection.id, {'collector_id': collector.id})
    assert claimed.collector_id == collector.id


@pytest.mark.asyncio
async def test_complete_collection_once(manager, storage, registry, household, collector):
    """Completion adds round(amount * 5) and exactly one impact row."""
    collection = await _claimed(manager, household, collector)
    score_before = (await storage.get_user(household.id)).sustainability_score
    impacts_before = len(await storage.get_impacts_by_collection(collection.id))
    owner_ws = FakeWebSocket()
    registry.register(household.id, household.role, owner_ws)

    completed = await manager.update_collection(collector, collection.id, {
        'status': 'completed',
        'waste_amount': 12.5
    })

    assert completed.status == 'completed'
    assert completed.waste_amount == 12.5
    assert completed.completed_date is not None
    assert (await storage.get_user(household.id)).sustainability_score == score_before + 63
    impacts = await storage.get_impacts_by_collection(collection.id)
    assert len(impacts) == impacts_before + 1
    completion = [i for i in impacts if i.waste_amount == 12.5][0]
    assert completion.co2_reduced == pytest.approx(31.25)
    assert completion.trees_equivalent == pytest.approx(1.25)

    frame = owner_ws.frames('collection_update')[0]
    assert frame['data']['pointsEarned'] == 63

    collector_activities = await storage.get_activities_by_user(collector.id)
    assert collector_activities[0].activity_type == 'job_completed'

    # Completed is terminal
    with pytest.raises(InvalidTransitionError):
        await manager.update_collection(collector, collection.id, {'status': 'in_progress'})
    assert len(await storage.get_impacts_by_collection(collection.id)) == impacts_before + 1


@pytest.mark.asyncio
async def test_completion_requires_amount(manager, household, collector):
    collection = await _claimed(manager, household, collector)
    with pytest.raises(CollectionValidationError):
        await manager.update_collection(collector, collection.id, {'status': 'completed'})
    with pytest.raises(CollectionValidationError):
        await manager.update_collection(collector, collection.id, {'status': 'completed', 'waste_amount': -1})


@pytest.mark.asyncio
async def test_waste_amount_only_with_completion(manager, storage, household, collector):
    collection = await _claimed(manager, household, collector)
    with pytest.raises(CollectionValidationError):
        await manager.update_collection(collector, collection.id, {'waste_amount': 5})
    assert (await storage.get_collection(collection.id)).waste_amount is None


@pytest.mark.asyncio
async def test_status_transitions(manager, household, collector):
    collection = await _claimed(manager, household, collector)
    updated = await manager.update_collection(collector, collection.id, {'status': 'in_progress'})
    assert updated.status == 'in_progress'
    with pytest.raises(InvalidTransitionError):
        await manager.update_collection(collector, collection.id, {'status': 'confirmed'})


@pytest.mark.asyncio
async def test_role_field_restrictions(manager, household, collector, make_user):
    collection = await _claimed(manager, household, collector)

    with pytest.raises(CollectionForbiddenError):
        await manager.update_collection(collector, collection.id, {'address': 'elsewhere'})
    with pytest.raises(CollectionForbiddenError):
        await manager.update_collection(household, collection.id, {'status': 'completed', 'waste_amount': 3})
    with pytest.raises(CollectionForbiddenError):
        await manager.update_collection(household, collection.id, {'collector_id': household.id})

    updated = await manager.update_collection(household, collection.id, {'notes': 'Gate code 1234'})
    assert updated.notes == 'Gate code 1234'

    other = await make_user('dave', 'collector')
    with pytest.raises(CollectionForbiddenError):
        await manager.update_collection(other, collection.id, {'status': 'in_progress'})

    cancelled = await manager.update_collection(household, collection.id, {'status': 'cancelled'})
    assert cancelled.status == 'cancelled'


@pytest.mark.asyncio
async def test_visibility(manager, household, collector, recycler, make_user):
    """Owners never see other owners' collections."""
    neighbour = await make_user('erin', 'organization')
    mine = await _request(manager, household)
    theirs = await _request(manager, neighbour)
    done = await _claimed(manager, neighbour, collector)
    await manager.update_collection(collector, done.id, {'status': 'completed', 'waste_amount': 4})

    assert {c.id for c in await manager.list_collections(household)} == {mine.id}
    assert {c.id for c in await manager.list_collections(neighbour)} == {theirs.id, done.id}
    assert {c.id for c in await manager.list_collections(collector)} == {mine.id, theirs.id, done.id}
    assert {c.id for c in await manager.list_collections(recycler)} == {done.id}

    with pytest.raises(CollectionForbiddenError):
        await manager.get_collection(household, theirs.id)
    assert (await manager.get_collection(recycler, done.id)).id == done.id
    with pytest.raises(CollectionForbiddenError):
        await manager.get_collection(recycler, mine.id)


@pytest.mark.asyncio
async def test_can_view_hides_claimed_from_other_collectors(manager, household, collector, make_user):
    other = await make_user('dave', 'collector')
    claimed = await _claimed(manager, household, collector)
    assert can_view(collector, claimed)
    assert not can_view(other, claimed)


@pytest.mark.asyncio
async def test_collector_lists(manager, household, collector, make_user):
    claimed = await _claimed(manager, household, collector)
    await manager.update_collection(collector, claimed.id, {'status': 'completed', 'waste_amount': 2})

    assert [c.id for c in await manager.list_assigned(collector)] == [claimed.id]
    assert [c.id for c in await manager.list_completed_by_collector(collector, collector.id)] == [claimed.id]

    other = await make_user('dave', 'collector')
    with pytest.raises(CollectionForbiddenError):
        await manager.list_completed_by_collector(other, collector.id)
    with pytest.raises(CollectionForbiddenError):
        await manager.list_assigned(household)


@pytest.mark.asyncio
async def test_list_upcoming(manager, household):
    upcoming = await _request(manager, household)
    cancelled = await _request(manager, household)
    await manager.update_collection(household, cancelled.id, {'status': 'cancelled'})
    assert [c.id for c in await manager.list_upcoming(household)] == [upcoming.id]
