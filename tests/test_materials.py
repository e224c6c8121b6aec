"""Tests for the materials marketplace."""

import pytest
import pytest_asyncio

from materials import (
    InterestForbiddenError, InterestNotFoundError, InvalidInterestError, MaterialsManager
)
from pickups import CollectionManager
from tests.conftest import FakeWebSocket, tomorrow


@pytest_asyncio.fixture
async def collections(storage, registry):
    return CollectionManager(storage, registry)


@pytest_asyncio.fixture
async def materials(storage, registry):
    return MaterialsManager(storage, registry)


@pytest_asyncio.fixture
async def completed(collections, household, collector):
    """A completed collection holding 15kg of plastic."""
    collection, _, _ = await collections.create_collection(household, {
        'waste_type': 'plastic', 'scheduled_date': tomorrow(), 'address': '1 Green Lane'
    })
    await collections.claim_collection(collector, collection.id)
    return await collections.update_collection(collector, collection.id, {
        'status': 'completed', 'waste_amount': 15
    })


@pytest.mark.asyncio
async def test_express_interest(materials, storage, registry, completed, household, collector, recycler):
    owner_ws, collector_ws = FakeWebSocket(), FakeWebSocket()
    registry.register(household.id, household.role, owner_ws)
    registry.register(collector.id, collector.role, collector_ws)

    interest = await materials.express_interest(recycler, completed.id, 10, 0.5, "Can collect Friday")

    assert interest.status == 'pending'
    assert interest.amount_requested == 10
    assert interest.price_per_kg == 0.5
    assert [i.id for i in await storage.get_interests_by_collection(completed.id)] == [interest.id]
    assert (await storage.get_activities_by_user(recycler.id, 1))[0].activity_type == 'material_interest'

    for ws in (owner_ws, collector_ws):
        frames = ws.frames('notification')
        assert len(frames) == 1
        assert frames[0]['data']['type'] == 'material_interest'
        assert frames[0]['data']['recyclerId'] == recycler.id


@pytest.mark.asyncio
async def test_express_interest_over_amount_has_no_side_effects(materials, storage, completed, recycler):
    """Requesting 20kg of a 15kg collection is rejected."""
    activities_before = len(await storage.get_activities_by_user(recycler.id, 100))

    with pytest.raises(InvalidInterestError):
        await materials.express_interest(recycler, completed.id, 20)

    assert await storage.get_interests_by_collection(completed.id) == []
    assert len(await storage.get_activities_by_user(recycler.id, 100)) == activities_before


@pytest.mark.asyncio
async def test_express_interest_rules(materials, collections, household, collector, recycler, completed):
    open_collection, _, _ = await collections.create_collection(household, {
        'waste_type': 'glass', 'scheduled_date': tomorrow(), 'address': 'x'
    })

    with pytest.raises(InvalidInterestError):
        await materials.express_interest(recycler, open_collection.id)
    with pytest.raises(InterestNotFoundError):
        await materials.express_interest(recycler, 999)
    with pytest.raises(InterestForbiddenError):
        await materials.express_interest(collector, completed.id)
    with pytest.raises(InvalidInterestError):
        await materials.express_interest(recycler, completed.id, price_per_kg=-1)

    # In progress with a collector is on the market
    await collections.claim_collection(collector, open_collection.id)
    await collections.update_collection(collector, open_collection.id, {'status': 'in_progress'})
    interest = await materials.express_interest(recycler, open_collection.id)
    assert interest.collection_id == open_collection.id


@pytest.mark.asyncio
async def test_only_assigned_collector_updates_status(materials, storage, completed, household, recycler, make_user):
    """Anyone but the assigned collector gets a forbidden error and nothing changes."""
    interest = await materials.express_interest(recycler, completed.id, 5)
    other = await make_user('dave', 'collector')

    for user in (other, household, recycler):
        with pytest.raises(InterestForbiddenError):
            await materials.update_interest_status(user, interest.id, 'accepted')

    assert (await storage.get_material_interest(interest.id)).status == 'pending'


@pytest.mark.asyncio
async def test_status_points_and_notification(materials, storage, registry, completed, collector, recycler):
    interest = await materials.express_interest(recycler, completed.id, 5)
    collector_score = (await storage.get_user(collector.id)).sustainability_score
    recycler_score = (await storage.get_user(recycler.id)).sustainability_score
    recycler_ws = FakeWebSocket()
    registry.register(recycler.id, recycler.role, recycler_ws)

    accepted = await materials.update_interest_status(collector, interest.id, 'accepted')
    assert accepted.status == 'accepted'
    assert (await storage.get_user(collector.id)).sustainability_score == collector_score + 10
    assert (await storage.get_user(recycler.id)).sustainability_score == recycler_score + 5

    await materials.update_interest_status(collector, interest.id, 'completed')
    assert (await storage.get_user(collector.id)).sustainability_score == collector_score + 25
    assert (await storage.get_user(recycler.id)).sustainability_score == recycler_score + 25

    frames = recycler_ws.frames('notification')
    assert [f['data']['interest']['status'] for f in frames] == ['accepted', 'completed']
    assert frames[1]['data']['pointsEarned'] == 20


@pytest.mark.asyncio
async def test_no_repeat_or_exit_from_final(materials, storage, completed, collector, recycler):
    interest = await materials.express_interest(recycler, completed.id)
    await materials.update_interest_status(collector, interest.id, 'accepted')
    score = (await storage.get_user(collector.id)).sustainability_score

    with pytest.raises(InvalidInterestError):
        await materials.update_interest_status(collector, interest.id, 'accepted')

    await materials.update_interest_status(collector, interest.id, 'rejected')
    with pytest.raises(InvalidInterestError):
        await materials.update_interest_status(collector, interest.id, 'completed')

    assert (await storage.get_user(collector.id)).sustainability_score == score
    with pytest.raises(InvalidInterestError):
        await materials.update_interest_status(collector, interest.id, 'pending')


@pytest.mark.asyncio
async def test_pending_to_completed_allowed(materials, completed, collector, recycler):
    interest = await materials.express_interest(recycler, completed.id)
    done = await materials.update_interest_status(collector, interest.id, 'completed')
    assert done.status == 'completed'


@pytest.mark.asyncio
async def test_role_scoped_listings(materials, completed, household, collector, recycler, make_user):
    interest = await materials.express_interest(recycler, completed.id)
    other = await make_user('dave', 'collector')

    assert [i.id for i in await materials.get_interests(recycler)] == [interest.id]
    assert [i.id for i in await materials.get_interests(collector)] == [interest.id]
    assert [i.id for i in await materials.get_interests(household)] == [interest.id]
    assert await materials.get_interests(other) == []

    assert [i.id for i in await materials.get_interests_for_collector(collector, collector.id)] == [interest.id]
    with pytest.raises(InterestForbiddenError):
        await materials.get_interests_for_collector(other, collector.id)

    assert [c.id for c in await materials.get_available_materials(recycler)] == [completed.id]
    with pytest.raises(InterestForbiddenError):
        await materials.get_available_materials(household)
