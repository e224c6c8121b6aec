"""End-to-end tests for the REST and WebSocket endpoints."""

import pytest
from fastapi.testclient import TestClient

from api import create_app
from storage import DEFAULT_ECO_TIPS, MemStorage
from tests.conftest import tomorrow


@pytest.fixture
def client(settings):
    app = create_app(storage=MemStorage(), settings=settings)
    with TestClient(app) as client:
        yield client


def register(client, username, role='household'):
    """Register a user and return (user json, auth headers)."""
    response = client.post("/api/register", json={
        "username": username,
        "email": f"{username}@example.com",
        "password": "secret123",
        "fullName": username.title(),
        "role": role
    })
    assert response.status_code == 201, response.text
    token = response.cookies.get("pipapal_session")
    assert token
    return response.json(), {"Authorization": f"Bearer {token}"}


def request_pickup(client, headers, **extra):
    body = {
        "wasteType": "plastic",
        "scheduledDate": tomorrow().isoformat(),
        "address": "1 Green Lane",
        **extra
    }
    response = client.post("/api/collections", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_register_login_logout(client):
    user, headers = register(client, "alice")
    assert user["username"] == "alice"
    assert user["sustainabilityScore"] == 0
    assert "password" not in user

    assert client.post("/api/register", json={
        "username": "alice", "email": "new@example.com", "password": "secret123", "fullName": "A"
    }).status_code == 400

    assert client.post("/api/login", json={"username": "alice", "password": "nope"}).status_code == 401
    login = client.post("/api/login", json={"username": "alice", "password": "secret123"})
    assert login.status_code == 200
    assert login.json()["id"] == user["id"]

    me = client.get("/api/user", headers=headers)
    assert me.status_code == 200
    assert me.json()["email"] == "alice@example.com"

    assert client.post("/api/logout", headers=headers).status_code == 200
    client.cookies.clear()
    assert client.get("/api/user", headers=headers).status_code == 401


def test_cookie_session(client):
    register(client, "alice")
    # The session cookie set by registration authenticates on its own
    assert client.get("/api/user").json()["username"] == "alice"


def test_validation_errors_are_400(client):
    response = client.post("/api/register", json={"username": "al", "email": "not-an-email"})
    assert response.status_code == 400
    body = response.json()
    assert body["message"] == "Validation failed"
    fields = {tuple(e["loc"])[-1] for e in body["errors"]}
    assert {"username", "email", "password"} <= fields


def test_unauthenticated_is_401(client):
    assert client.get("/api/collections").status_code == 401
    assert client.get("/api/impact").status_code == 401


def test_errors_use_message_envelope(client):
    unauthenticated = client.get("/api/collections")
    assert set(unauthenticated.json()) == {"message"}

    _, alice = register(client, "alice")
    missing = client.get("/api/collections/999", headers=alice)
    assert missing.status_code == 404
    assert missing.json() == {"message": "Collection 999 not found"}

    assert client.get("/api/no-such-route").json() == {"message": "Not Found"}


def test_create_collection_response(client):
    _, headers = register(client, "alice")
    collection = request_pickup(client, headers, wasteAmount=20)
    assert collection["pointsEarned"] == 20
    assert collection["newTotalPoints"] == 20
    assert collection["status"] == "scheduled"
    assert collection["wasteAmount"] is None
    assert collection["collectorId"] is None

    assert client.get("/api/user", headers=headers).json()["sustainabilityScore"] == 20


def test_role_guards(client):
    _, collector = register(client, "bob", "collector")
    _, recycler = register(client, "carol", "recycler")
    body = {"wasteType": "paper", "scheduledDate": tomorrow().isoformat(), "address": "x"}
    assert client.post("/api/collections", json=body, headers=collector).status_code == 403
    assert client.post("/api/collections", json=body, headers=recycler).status_code == 403
    assert client.get("/api/collections/assigned", headers=recycler).status_code == 403


def test_collection_visibility(client):
    _, alice = register(client, "alice")
    _, erin = register(client, "erin", "organization")
    _, bob = register(client, "bob", "collector")
    _, carol = register(client, "carol", "recycler")

    mine = request_pickup(client, alice)
    theirs = request_pickup(client, erin)

    assert [c["id"] for c in client.get("/api/collections", headers=alice).json()] == [mine["id"]]
    assert [c["id"] for c in client.get("/api/collections", headers=erin).json()] == [theirs["id"]]
    assert {c["id"] for c in client.get("/api/collections", headers=bob).json()} == {mine["id"], theirs["id"]}
    assert client.get("/api/collections", headers=carol).json() == []

    assert client.get(f"/api/collections/{theirs['id']}", headers=alice).status_code == 403
    assert client.get("/api/collections/999", headers=alice).status_code == 404


def test_claim_and_complete_flow(client):
    owner, alice = register(client, "alice")
    collector, bob = register(client, "bob", "collector")
    _, dave = register(client, "dave", "collector")
    collection = request_pickup(client, alice)
    url = f"/api/collections/{collection['id']}"

    claimed = client.patch(url, json={"collectorId": collector["id"]}, headers=bob)
    assert claimed.status_code == 200
    assert claimed.json()["collectorId"] == collector["id"]

    assert client.post(f"{url}/claim", headers=dave).status_code == 409
    assert client.patch(url, json={"status": "in_progress"}, headers=dave).status_code == 403
    assert client.patch(url, json={"address": "elsewhere"}, headers=bob).status_code == 403
    assert client.patch(url, json={"status": "completed"}, headers=bob).status_code == 400

    done = client.patch(url, json={"status": "completed", "wasteAmount": 8}, headers=bob)
    assert done.status_code == 200
    assert done.json()["wasteAmount"] == 8

    score = client.get("/api/user", headers=alice).json()["sustainabilityScore"]
    assert score == 10 + 40

    assert client.patch(url, json={"status": "cancelled"}, headers=alice).status_code == 400
    completed = client.get(f"/api/collections/collector/{collector['id']}/completed", headers=bob).json()
    assert [c["id"] for c in completed] == [collection["id"]]
    assert client.get(f"/api/collections/collector/{collector['id']}/completed", headers=dave).status_code == 403
    assert owner["id"] == collection["userId"]


def test_marketplace_flow(client):
    _, alice = register(client, "alice")
    collector, bob = register(client, "bob", "collector")
    _, carol = register(client, "carol", "recycler")
    _, dave = register(client, "dave", "collector")
    collection = request_pickup(client, alice)
    url = f"/api/collections/{collection['id']}"
    client.post(f"{url}/claim", headers=bob)
    client.patch(url, json={"status": "completed", "wasteAmount": 15}, headers=bob)

    too_much = client.post("/api/materials/express-interest", json={
        "collectionId": collection["id"], "amountRequested": 20
    }, headers=carol)
    assert too_much.status_code == 400
    assert client.get("/api/materials/interests", headers=carol).json() == []

    assert client.post("/api/materials/express-interest", json={
        "collectionId": collection["id"]
    }, headers=bob).status_code == 403

    created = client.post("/api/materials/express-interest", json={
        "collectionId": collection["id"], "amountRequested": 10, "pricePerKg": 0.4
    }, headers=carol)
    assert created.status_code == 201
    interest = created.json()
    assert interest["status"] == "pending"

    available = client.get("/api/materials/available", headers=carol).json()
    assert [c["id"] for c in available] == [collection["id"]]

    interests = client.get(f"{url}/interests", headers=alice)
    assert [i["id"] for i in interests.json()] == [interest["id"]]
    assert client.get(f"{url}/interests", headers=carol).status_code == 403

    status_url = f"/api/material-interests/{interest['id']}/status"
    assert client.patch(status_url, json={"status": "accepted"}, headers=dave).status_code == 403
    assert client.patch(status_url, json={"status": "bogus"}, headers=bob).status_code == 400
    accepted = client.patch(status_url, json={"status": "accepted"}, headers=bob)
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "accepted"
    assert client.patch(status_url, json={"status": "accepted"}, headers=bob).status_code == 400

    by_collector = client.get(f"/api/material-interests/collector/{collector['id']}", headers=bob).json()
    assert [i["id"] for i in by_collector] == [interest["id"]]


def test_impact_endpoints(client):
    _, alice = register(client, "alice")
    _, bob = register(client, "bob", "collector")
    collection = request_pickup(client, alice, wasteType="metal")
    url = f"/api/collections/{collection['id']}"
    client.post(f"{url}/claim", headers=bob)
    client.patch(url, json={"status": "completed", "wasteAmount": 4}, headers=bob)

    impact = client.get("/api/impact", headers=alice).json()
    # Creation (10kg default) plus completion (4kg)
    assert impact["wasteAmount"] == 14
    assert impact["waterSaved"] == 10 * 50 + 4 * 10

    collector_impact = client.get("/api/impact", headers=bob).json()
    assert collector_impact["wasteAmount"] == 4
    assert collector_impact["co2Reduced"] == 10

    monthly = client.get("/api/impact/monthly", headers=alice).json()
    assert len(monthly) == 6
    assert set(monthly[-1]) == {"name", "wasteCollected", "co2Reduced", "collections"}

    breakdown = client.get("/api/impact/waste-types", headers=alice).json()
    assert breakdown == [{"name": "metal", "value": 4}]

    badges = client.get("/api/badges", headers=alice).json()
    assert [b["badgeType"] for b in badges] == ["eco_starter"]
    activities = client.get("/api/activities?limit=2", headers=alice).json()
    assert len(activities) == 2


def test_profile_and_onboarding(client):
    _, erin = register(client, "erin", "organization")
    assert client.post("/api/onboarding", json={"organizationType": "school"}, headers=erin).status_code == 400
    onboarded = client.post("/api/onboarding", json={
        "organizationType": "school",
        "organizationName": "Green School",
        "contactPersonName": "Grace"
    }, headers=erin)
    assert onboarded.status_code == 200
    assert onboarded.json()["onboardingCompleted"] is True

    patched = client.patch("/api/user", json={"phone": "0700000000"}, headers=erin)
    assert patched.json()["phone"] == "0700000000"

    score = onboarded.json()["sustainabilityScore"]
    body = {"organizationType": "school", "organizationName": "Green School", "contactPersonName": "Grace"}
    for _ in range(3):
        reset = client.patch("/api/user", json={"onboardingCompleted": False}, headers=erin)
        assert reset.json()["onboardingCompleted"] is True
        assert client.post("/api/onboarding", json=body, headers=erin).json()["sustainabilityScore"] == score

    _, alice = register(client, "alice")
    assert client.patch("/api/user/business", json={"businessName": "X"}, headers=alice).status_code == 403
    assert client.post("/api/user/password", json={
        "currentPassword": "wrong", "newPassword": "x"
    }, headers=alice).status_code == 400


def test_google_login(client):
    response = client.post("/api/login-with-google", json={
        "uid": "google-1", "email": "gina@example.com", "displayName": "Gina"
    })
    assert response.status_code == 200
    assert response.json()["fullName"] == "Gina"
    again = client.post("/api/login-with-google", json={"uid": "google-1", "email": "gina@example.com"})
    assert again.json()["id"] == response.json()["id"]


def test_chat_endpoints(client):
    alice_user, alice = register(client, "alice")
    bob_user, bob = register(client, "bob", "collector")

    sent = client.post("/api/chat/messages", json={"receiverId": alice_user["id"], "content": "On my way"}, headers=bob)
    assert sent.status_code == 201
    assert client.post("/api/chat/messages", json={"receiverId": 999, "content": "hi"}, headers=bob).status_code == 404

    assert client.get("/api/chat/unread-count", headers=alice).json() == {"count": 1}
    conversations = client.get("/api/chat/conversations", headers=alice).json()
    assert conversations[0]["userId"] == bob_user["id"]
    assert conversations[0]["unreadCount"] == 1

    messages = client.get(f"/api/chat/messages/{bob_user['id']}", headers=alice).json()
    assert [m["content"] for m in messages] == ["On my way"]
    assert client.get("/api/chat/unread-count", headers=alice).json() == {"count": 0}

    users = client.get("/api/chat/available-users", headers=alice).json()
    assert [u["id"] for u in users] == [bob_user["id"]]


def test_ecotips_feedback_and_centers(client):
    tips = client.get("/api/ecotips").json()
    assert len(tips) == len(DEFAULT_ECO_TIPS)
    assert client.get(f"/api/ecotips/{tips[0]['id']}").json()["title"] == tips[0]["title"]
    assert client.get("/api/ecotips/999").status_code == 404

    alice_user, alice = register(client, "alice")
    assert client.post("/api/ecotips/generate", json={}, headers=alice).status_code == 400
    generated = client.post("/api/ecotips/generate", json={"category": "water"}, headers=alice)
    assert generated.status_code == 201
    assert generated.json()["category"] == "water"
    assert len(client.get("/api/ecotips").json()) == len(DEFAULT_ECO_TIPS) + 1

    feedback = client.post("/api/feedback", json={
        "category": "bug", "title": "Map is slow", "content": "Takes ages", "rating": 3
    }, headers=alice)
    assert feedback.status_code == 201
    assert client.post("/api/feedback", json={
        "category": "bug", "title": "x", "content": "y", "rating": 9
    }, headers=alice).status_code == 400
    assert len(client.get("/api/feedback", headers=alice).json()) == 1
    assert client.get(f"/api/users/{alice_user['id']}/feedback", headers=alice).status_code == 200
    assert client.get(f"/api/users/{alice_user['id'] + 1}/feedback", headers=alice).status_code == 403

    assert client.get("/api/recycling-centers").json() == []
    assert client.get("/api/recycling-centers/1").status_code == 404


def test_websocket_auth_and_push(client):
    owner, alice = register(client, "alice")
    collector, bob = register(client, "bob", "collector")
    bob_token = bob["Authorization"].split()[1]
    client.post("/api/chat/messages", json={"receiverId": collector["id"], "content": "Hello"}, headers=alice)

    with client.websocket_connect("/ws") as ws:
        ws.send_json({"type": "chat_message", "receiverId": owner["id"], "content": "too early"})
        error = ws.receive_json()
        assert error["type"] == "_system"
        assert error["event"] == "error"

        ws.send_json({"type": "auth", "token": bob_token})
        status = ws.receive_json()
        assert status["type"] == "_system"
        assert status["event"] == "connection_status"
        assert status["data"]["userId"] == collector["id"]
        unread = ws.receive_json()
        assert unread["type"] == "unread_messages"
        assert unread["data"] == {"count": 1}

        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"

        collection = request_pickup(client, alice)
        pushed = ws.receive_json()
        assert pushed["type"] == "new_collection"
        assert pushed["data"]["collection"]["id"] == collection["id"]

        ws.send_json({"type": "chat_message", "receiverId": owner["id"], "content": "I'll take it"})
        echoed = ws.receive_json()
        assert echoed["type"] == "new_message"
        assert echoed["data"]["senderId"] == collector["id"]

        ws.send_text("not json")
        assert ws.receive_json()["event"] == "error"

    assert client.get("/api/chat/unread-count", headers=alice).json() == {"count": 1}
