"""
Tests for the Finzen sync (app.services.finzen_sync).

These tests verify:
  - GET /upi/transactions/{upi_id}/finzen imports Finzen records the
    account does not hold yet, as external entries
  - Records already held (same correlation id) and malformed records are skipped
  - Local entries are marked as synced
  - Transient Finzen failures are retried; persistent ones answer 502
  - An unconfigured client answers 502 without any HTTP call
  - The all-accounts job keeps going when Finzen is down
  - The periodic job outlives a database error
  - A forward that crashes does not stop the rest of its batch
"""

import asyncio
import json

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.dependencies import get_finzen_client
from app.main import app
from app.models.account import Account
from app.models.ledger_entry import LedgerEntry
from app.services import finzen_sync


def _record(correlation_id, type_="income", amount=2500, **overrides):
    record = {
        "type": type_,
        "amount_paise": amount,
        "category": "salary",
        "note": "from employer",
        "date": "2025-01-15T10:00:00+00:00",
        "correlation_id": correlation_id,
        "sender_upi_id": "employer@bank",
        "receiver_upi_id": "alice@finzen",
    }
    record.update(overrides)
    return record


async def _sync(client, headers, upi_id="alice@finzen"):
    return await client.get(f"/upi/transactions/{upi_id}/finzen", headers=headers)


async def _entries_by_user(session_factory) -> dict[str, list[LedgerEntry]]:
    async with session_factory() as session:
        result = await session.execute(
            select(Account.user_id, LedgerEntry).where(LedgerEntry.account_id == Account.id)
        )
        grouped: dict[str, list[LedgerEntry]] = {}
        for user_id, entry in result.all():
            grouped.setdefault(user_id, []).append(entry)
        return grouped


@pytest_asyncio.fixture
async def alice_and_bob(register):
    alice = await register("alice", 10000)
    bob = await register("bob", 0)
    return alice, bob


class TestSyncEndpoint:

    async def test_imports_external_records(self, client, alice_and_bob, finzen_stub):
        alice, _ = alice_and_bob
        finzen_stub.records = [_record("ext-1")]

        response = await _sync(client, alice)
        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        imported = entries[0]
        assert imported["origin"] == "external"
        assert imported["direction"] == "credit"
        assert imported["amount_paise"] == 2500
        assert imported["correlation_id"] == "ext-1"
        assert imported["counterpart_upi_id"] == "employer@bank"
        assert imported["synced_with_finzen"] is True

        get = [r for r in finzen_stub.requests if r.method == "GET"][0]
        assert get.headers["User-ID"] == "alice"
        assert get.headers["UPI-ID"] == "alice@finzen"

    async def test_import_does_not_touch_balance(self, client, alice_and_bob, finzen_stub):
        alice, _ = alice_and_bob
        finzen_stub.records = [_record("ext-1")]
        await _sync(client, alice)

        response = await client.get("/upi/balance/alice@finzen", headers=alice)
        assert response.json()["balance_paise"] == 10000

    async def test_skips_known_and_malformed_records(self, client, alice_and_bob, finzen, finzen_stub):
        alice, _ = alice_and_bob
        sent = await client.post(
            "/upi/send",
            json={
                "receiver_upi_id": "bob@finzen",
                "amount_paise": 4000,
                "category": "food",
                "request_id": "r1",
            },
            headers=alice,
        )
        await finzen.drain()
        correlation_id = sent.json()["correlation_id"]

        finzen_stub.records = [
            _record(correlation_id, type_="debit", amount=4000),
            _record("ext-1", type_="expense", amount=700, category="bills"),
            _record("ext-1", type_="expense", amount=700),
            {"type": "income", "correlation_id": "broken"},
            _record("ext-2", type_="refund"),
            _record("ext-3", amount=0),
        ]

        response = await _sync(client, alice)
        assert response.status_code == 200
        entries = response.json()
        assert sorted((e["origin"], e["correlation_id"]) for e in entries) == [
            ("external", "ext-1"),
            ("local", correlation_id),
        ]
        external = next(e for e in entries if e["origin"] == "external")
        assert external["direction"] == "debit"
        assert external["category"] == "bills"

    async def test_marks_local_entries_synced(self, client, alice_and_bob, finzen, finzen_stub):
        alice, bob = alice_and_bob
        await client.post(
            "/upi/send",
            json={
                "receiver_upi_id": "bob@finzen",
                "amount_paise": 4000,
                "category": "food",
                "request_id": "r1",
            },
            headers=alice,
        )
        await finzen.drain()

        response = await _sync(client, alice)
        assert [e["synced_with_finzen"] for e in response.json()] == [True]

        # Bob has not synced yet
        response = await client.get("/upi/transactions/bob@finzen", headers=bob)
        assert [e["synced_with_finzen"] for e in response.json()] == [False]

    async def test_repeat_sync_imports_nothing_new(self, client, alice_and_bob, finzen_stub):
        alice, _ = alice_and_bob
        finzen_stub.records = [_record("ext-1")]
        await _sync(client, alice)
        response = await _sync(client, alice)
        assert [e["correlation_id"] for e in response.json()] == ["ext-1"]

    async def test_transient_failure_is_retried(self, client, alice_and_bob, finzen_stub):
        alice, _ = alice_and_bob
        finzen_stub.records = [_record("ext-1")]
        finzen_stub.fail_next = 2

        response = await _sync(client, alice)
        assert response.status_code == 200
        assert len(response.json()) == 1
        assert len([r for r in finzen_stub.requests if r.method == "GET"]) == 3

    async def test_persistent_failure_is_502(self, client, alice_and_bob, finzen_stub):
        alice, _ = alice_and_bob
        finzen_stub.fail_next = 100

        response = await _sync(client, alice)
        assert response.status_code == 502
        assert response.json()["error_type"] == "external_sync_failed"

    async def test_invalid_payload_is_502(self, client, alice_and_bob, finzen_stub):
        alice, _ = alice_and_bob
        finzen_stub.records = {"transactions": []}

        response = await _sync(client, alice)
        assert response.status_code == 502

    async def test_unconfigured_is_502(self, client, alice_and_bob, finzen_stub, disabled_finzen):
        alice, _ = alice_and_bob
        app.dependency_overrides[get_finzen_client] = lambda: disabled_finzen

        response = await _sync(client, alice)

        assert response.status_code == 502
        assert response.json()["detail"] == "Finzen sync is not configured"
        assert finzen_stub.requests == []

    async def test_other_users_sync_is_forbidden(self, client, alice_and_bob, finzen_stub):
        alice, _ = alice_and_bob
        response = await _sync(client, alice, upi_id="bob@finzen")
        assert response.status_code == 403
        assert finzen_stub.requests == []


class TestSyncAllAccounts:

    async def test_every_account_is_synced(self, alice_and_bob, session_factory, finzen, finzen_stub):
        finzen_stub.records = [_record("ext-1")]

        await finzen_sync.sync_all_accounts(session_factory, finzen)

        grouped = await _entries_by_user(session_factory)
        assert sorted(grouped) == ["alice", "bob"]
        for entries in grouped.values():
            assert [(e.origin, e.correlation_id) for e in entries] == [("external", "ext-1")]

        users = sorted(r.headers["User-ID"] for r in finzen_stub.requests)
        assert users == ["alice", "bob"]

    async def test_outage_does_not_raise(self, alice_and_bob, session_factory, finzen, finzen_stub):
        finzen_stub.records = [_record("ext-1")]
        finzen_stub.fail_next = 100

        await finzen_sync.sync_all_accounts(session_factory, finzen)

        assert await _entries_by_user(session_factory) == {}
        # Three attempts per account
        assert len(finzen_stub.requests) == 6


class FlakySessionFactory:
    """Wraps a session factory; the first `failures` calls raise OperationalError."""

    def __init__(self, factory, failures=1):
        self.factory = factory
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise OperationalError("SELECT accounts.id FROM accounts", {}, Exception("database is locked"))
        return self.factory()


class TestBackgroundJobs:

    async def test_periodic_sync_survives_database_error(
        self, alice_and_bob, session_factory, finzen, finzen_stub
    ):
        finzen_stub.records = [_record("ext-1")]
        flaky = FlakySessionFactory(session_factory, failures=1)

        task = asyncio.create_task(finzen_sync.run_periodic_sync(flaky, finzen, 0.01))
        for _ in range(500):
            if len([r for r in finzen_stub.requests if r.method == "GET"]) >= 2:
                break
            await asyncio.sleep(0.01)

        still_running = not task.done()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert still_running
        assert flaky.failures == 0
        assert flaky.calls > 1
        # The first account fetched was committed before the second was fetched
        grouped = await _entries_by_user(session_factory)
        assert any(
            [(e.origin, e.correlation_id) for e in entries] == [("external", "ext-1")]
            for entries in grouped.values()
        )

    async def test_crashing_forward_does_not_stop_the_batch(self, finzen, finzen_stub):
        unserializable = {
            "user": {"user_id": "alice"},
            "transaction": {"correlation_id": "c-1", "tags": {"not", "json"}},
        }
        valid = {
            "user": {"user_id": "alice"},
            "transaction": {"correlation_id": "c-2"},
        }

        finzen.forward_in_background([unserializable, valid])
        task = next(iter(finzen._tasks))
        await finzen.drain()

        assert task.exception() is None
        assert [json.loads(r.content)["transaction"]["correlation_id"] for r in finzen_stub.posts] == [
            "c-2"
        ]


class TestPayload:

    @pytest.mark.parametrize(
        "type_, direction",
        [("debit", "debit"), ("expense", "debit"), ("credit", "credit"), ("income", "credit")],
    )
    def test_direction_aliases(self, type_, direction):
        account = Account(user_id="alice", name="Alice", hashed_password="x", balance_paise=0)
        entry = finzen_sync._entry_from_record(account, _record("ext-1", type_=type_))
        assert entry.direction == direction
        assert entry.origin == "external"

    def test_naive_date_is_utc(self):
        account = Account(user_id="alice", name="Alice", hashed_password="x", balance_paise=0)
        entry = finzen_sync._entry_from_record(account, _record("ext-1", date="2025-01-15T10:00:00"))
        assert entry.created_at.utcoffset().total_seconds() == 0
