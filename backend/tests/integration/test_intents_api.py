import asyncio

import pytest
from fastapi.testclient import TestClient

from intent_coordinator.config import Settings
from intent_coordinator.db.session import create_all, make_engine, make_sessionmaker
from intent_coordinator.deps import get_intent_service, get_settings, get_store
from intent_coordinator.main import app
from intent_coordinator.models import TransactionType
from intent_coordinator.repos.intent_store import IntentStore
from intent_coordinator.services.intent_service import IntentService

from helpers import AMOUNT, SYNDICATE, TOKEN, USER, intent_id, tx_hash

ADMIN = {"X-Admin-Token": "test-admin-token"}


def _body(**kw):
    body = {
        "user": USER,
        "intentType": 2,
        "syndicateAddress": SYNDICATE,
        "amount": AMOUNT,
        "tokenAddress": TOKEN,
        "sourceChainId": 232,
        "destinationChainId": 8453,
        "maxFeePercentage": 50,
        "deadline": 2_000_000_000,
    }
    body.update(kw)
    return body


@pytest.fixture
def api(tmp_path):
    engine = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    asyncio.run(create_all(engine))
    store = IntentStore(make_sessionmaker(engine))
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: Settings(_env_file=None, ADMIN_TOKEN="test-admin-token")
    with TestClient(app) as client:
        yield client, store
    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


def _create(client, **kw) -> str:
    r = client.post("/intents", json=_body(**kw))
    assert r.status_code == 201, r.text
    return r.json()["intentId"]


def test_submit_and_get_intent(api):
    client, _ = api
    r = client.post("/intents", json=_body())
    assert r.status_code == 201, r.text
    data = r.json()
    assert data["status"] == "PENDING"
    assert len(data["intentId"]) == 66

    r2 = client.get(f"/intents/{data['intentId']}")
    assert r2.status_code == 200
    got = r2.json()
    assert got["amount"] == AMOUNT
    assert got["user"] == USER
    assert got["sourceChainId"] == 232
    assert got["transactions"] == []


@pytest.mark.parametrize(
    "override",
    [
        {"amount": 1.5},
        {"amount": "0"},
        {"amount": "-1"},
        {"user": "0x1234"},
        {"tokenAddress": "not-an-address"},
        {"intentType": 9},
        {"maxFeePercentage": 10_001},
        {"sourceChainId": 0},
    ],
)
def test_submit_validation_errors_are_400(api, override):
    client, _ = api
    r = client.post("/intents", json=_body(**override))
    assert r.status_code == 400, r.text


def test_submit_accepts_integer_amount(api):
    client, _ = api
    iid = _create(client, amount=10**24)
    assert client.get(f"/intents/{iid}").json()["amount"] == str(10**24)


def test_duplicate_submission_conflicts(api):
    client, store = api
    app.dependency_overrides[get_intent_service] = lambda: IntentService(store, clock=lambda: 1_700_000_000.0)
    _create(client)
    r = client.post("/intents", json=_body())
    assert r.status_code == 409
    assert r.json()["detail"] == "duplicate_intent"


def test_get_intent_errors(api):
    client, _ = api
    assert client.get("/intents/0x1234").status_code == 400
    r = client.get(f"/intents/{intent_id(404)}")
    assert r.status_code == 404
    assert r.json()["detail"] == "intent_not_found"


def test_get_intent_lists_transactions(api):
    client, store = api
    iid = _create(client)
    asyncio.run(
        store.create_transaction(iid, chain_id=232, tx_hash=tx_hash(1), type=TransactionType.BRIDGE, block_number=10)
    )
    txs = client.get(f"/intents/{iid}").json()["transactions"]
    assert [(t["type"], t["status"], t["blockNumber"]) for t in txs] == [("BRIDGE", "PENDING", 10)]


def test_user_intents_pagination(api):
    client, _ = api
    for n in range(3):
        _create(client, amount=str(1000 + n))

    r = client.get(f"/intents/user/{USER}", params={"page": 1, "limit": 2})
    assert r.status_code == 200
    data = r.json()
    assert data["count"] == 3
    assert data["page"] == 1
    assert data["totalPages"] == 2
    assert len(data["intents"]) == 2

    r2 = client.get(f"/intents/user/{USER}", params={"page": 2, "limit": 2})
    assert len(r2.json()["intents"]) == 1

    assert client.get(f"/intents/user/{USER}", params={"limit": 101}).status_code == 400
    assert client.get(f"/intents/user/{USER}", params={"page": 0}).status_code == 400
    assert client.get("/intents/user/" + "0x" + "99" * 20).json()["count"] == 0


def test_update_requires_admin_token(api):
    client, _ = api
    iid = _create(client)
    assert client.put(f"/intents/{iid}", json={"status": "EXECUTING"}).status_code == 403
    r = client.put(f"/intents/{iid}", json={"status": "EXECUTING"}, headers={"X-Admin-Token": "wrong"})
    assert r.status_code == 403


def test_update_is_disabled_without_configured_token(api):
    client, _ = api
    app.dependency_overrides[get_settings] = lambda: Settings(_env_file=None, ADMIN_TOKEN=None)
    iid = _create(client)
    assert client.put(f"/intents/{iid}", json={"status": "EXECUTING"}, headers=ADMIN).status_code == 403


def test_admin_status_updates(api):
    client, _ = api
    iid = _create(client)

    r = client.put(f"/intents/{iid}", json={"status": "EXECUTING"}, headers=ADMIN)
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "EXECUTING"

    # cross-chain без BRIDGE завершить нельзя
    assert client.put(f"/intents/{iid}", json={"status": "COMPLETED"}, headers=ADMIN).status_code == 409
    assert client.put(f"/intents/{iid}", json={"status": "BOGUS"}, headers=ADMIN).status_code == 400
    # назад по жизненному циклу нельзя
    r = client.put(f"/intents/{iid}", json={"status": "PENDING"}, headers=ADMIN)
    assert r.status_code == 409
    assert "cannot move back" in r.json()["detail"]
    assert client.get(f"/intents/{iid}").json()["status"] == "EXECUTING"

    r = client.put(f"/intents/{iid}", json={"status": "FAILED"}, headers=ADMIN)
    assert r.status_code == 200
    assert client.get(f"/intents/{iid}").json()["metadata"]["failureReason"] == "admin override"

    r = client.put(f"/intents/{iid}", json={"status": "PENDING"}, headers=ADMIN)
    assert r.status_code == 409
    assert r.json()["detail"] == "intent_terminal"

    assert client.put(f"/intents/{intent_id(404)}", json={"status": "FAILED"}, headers=ADMIN).status_code == 404


def test_health_live_and_metrics(api):
    client, _ = api
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["checks"]["db"] == "ok"
    assert client.get("/live").json() == {"status": "alive"}

    m = client.get("/metrics")
    assert m.status_code == 200
    assert m.headers["content-type"].startswith("text/plain")
    assert "api_requests_total" in m.text
    assert "coordinator_events_total" in m.text
