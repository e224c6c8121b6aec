"""Tests for the auth manager."""

import hashlib
from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth import (
    AuthError, DuplicateUserError, InvalidCredentialsError, ProfileValidationError,
    SessionExpiredError, hash_password, verify_password
)


def test_password_hash_round_trip():
    stored = hash_password('correct horse')
    digest, salt = stored.split('.')
    assert len(digest) == 128
    assert len(salt) == 32
    assert verify_password('correct horse', stored)
    assert not verify_password('wrong horse', stored)
    assert not verify_password('anything', 'malformed')
    assert hash_password('correct horse') != stored


def test_password_hash_uses_node_scrypt_parameters():
    # Digest is scrypt over the hex salt string with N=16384, r=8, p=1 and a 64 byte key
    stored = hash_password('s3cret!')
    digest, salt = stored.split('.')
    expected = hashlib.scrypt(b"s3cret!", salt=salt.encode(), n=16384, r=8, p=1, dklen=64)
    assert digest == expected.hex()
    assert verify_password('s3cret!', f"{expected.hex()}.{salt}")


@pytest.mark.asyncio
async def test_register_side_effects(storage, household):
    assert household.sustainability_score == 0
    assert (await storage.get_total_impact_by_user(household.id)).water_saved == 0
    assert len(await storage.get_impacts_by_user(household.id)) == 1
    assert [b.badge_type for b in await storage.get_badges_by_user(household.id)] == ['eco_starter']
    types = {a.activity_type for a in await storage.get_activities_by_user(household.id)}
    assert types == {'registration', 'badge_earned'}


@pytest.mark.asyncio
async def test_register_duplicates(make_user, household):
    with pytest.raises(DuplicateUserError):
        await make_user('alice')
    with pytest.raises(DuplicateUserError):
        await make_user('alice2', email=household.email)


@pytest.mark.asyncio
async def test_login_and_sessions(auth_manager, household):
    user, token = await auth_manager.login('alice', 'secret123')
    assert user.id == household.id
    assert (await auth_manager.verify_session(token)).id == household.id

    with pytest.raises(InvalidCredentialsError):
        await auth_manager.login('alice', 'wrong')
    with pytest.raises(InvalidCredentialsError):
        await auth_manager.login('nobody', 'secret123')

    await auth_manager.logout(token)
    with pytest.raises(AuthError):
        await auth_manager.verify_session(token)


@pytest.mark.asyncio
async def test_verify_rejects_bad_tokens(auth_manager, household):
    with pytest.raises(AuthError):
        await auth_manager.verify_session('not-a-token')

    forged = jwt.encode({'sub': str(household.id)}, 'other-secret', algorithm='HS256')
    with pytest.raises(AuthError):
        await auth_manager.verify_session(forged)

    expired = jwt.encode(
        {'sub': str(household.id), 'exp': int((datetime.now(timezone.utc) - timedelta(hours=1)).timestamp())},
        auth_manager.secret,
        algorithm='HS256'
    )
    with pytest.raises(SessionExpiredError):
        await auth_manager.verify_session(expired)


@pytest.mark.asyncio
async def test_google_login_upserts(auth_manager, storage, household):
    # Existing email is linked to the Google account
    user, _ = await auth_manager.login_with_google('g-1', household.email, 'Alice G')
    assert user.id == household.id
    assert user.google_uid == 'g-1'

    again, _ = await auth_manager.login_with_google('g-1', 'changed@example.com')
    assert again.id == household.id

    # Unknown account gets a fresh user with a unique username
    new, token = await auth_manager.login_with_google('g-2', 'alice@other.org', 'Alice Other')
    assert new.id != household.id
    assert new.username != 'alice'
    assert new.username.startswith('alice')
    assert new.full_name == 'Alice Other'
    assert (await auth_manager.verify_session(token)).id == new.id


@pytest.mark.asyncio
async def test_update_profile(auth_manager, household, make_user):
    other = await make_user('dave')
    updated = await auth_manager.update_profile(household, {
        'full_name': 'Alice Smith',
        'sustainability_score': 9999,
        'role': 'collector'
    })
    assert updated.full_name == 'Alice Smith'
    assert updated.sustainability_score == household.sustainability_score
    assert updated.role == 'household'

    with pytest.raises(DuplicateUserError):
        await auth_manager.update_profile(household, {'email': other.email})


@pytest.mark.asyncio
async def test_change_password(auth_manager, household):
    with pytest.raises(ProfileValidationError):
        await auth_manager.change_password(household, 'wrong', 'newsecret')
    await auth_manager.change_password(household, 'secret123', 'newsecret')
    await auth_manager.login('alice', 'newsecret')


@pytest.mark.asyncio
async def test_business_profile_not_for_households(auth_manager, household, collector):
    with pytest.raises(ProfileValidationError):
        await auth_manager.update_business(household, {'business_name': 'Alice Ltd'})
    updated = await auth_manager.update_business(collector, {'business_name': 'Bob Hauling', 'service_area': 'Westlands'})
    assert updated.business_name == 'Bob Hauling'


@pytest.mark.asyncio
async def test_onboarding_awards_once(auth_manager, storage, make_user):
    org = await make_user('greenco', 'organization')

    with pytest.raises(ProfileValidationError):
        await auth_manager.complete_onboarding(org, {'organization_type': 'school'})

    data = {
        'organization_type': 'school',
        'organization_name': 'Green School',
        'contact_person_name': 'Grace'
    }
    updated = await auth_manager.complete_onboarding(org, data)
    assert updated.onboarding_completed
    assert updated.organization_name == 'Green School'
    assert updated.sustainability_score == org.sustainability_score + 5

    again = await auth_manager.complete_onboarding(updated, data)
    assert again.sustainability_score == updated.sustainability_score
    badges = [b.badge_type for b in await storage.get_badges_by_user(org.id)]
    assert badges.count('profile_complete') == 1


@pytest.mark.asyncio
async def test_onboarding_flag_cannot_be_reset(auth_manager, storage, make_user):
    collector = await make_user('hauler', 'collector')
    onboarded = await auth_manager.complete_onboarding(collector, {'is_certified': False})
    score = onboarded.sustainability_score

    for _ in range(3):
        patched = await auth_manager.update_profile(onboarded, {'onboarding_completed': False})
        assert patched.onboarding_completed
        # A stale user object must not earn the points again either
        again = await auth_manager.complete_onboarding(collector, {})
        assert again.sustainability_score == score

    activities = await storage.get_activities_by_user(collector.id, limit=50)
    assert [a.activity_type for a in activities].count('onboarding') == 1
