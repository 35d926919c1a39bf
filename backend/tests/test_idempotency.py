"""
Idempotency guard tests.

A retried create or return carrying the same X-Idempotency-Key must not
sell, refund or post twice.
"""

from datetime import timedelta

import pytest

from backoffice.extensions import db
from backoffice.models import IdempotencyKey, SafeTransaction, SalesInvoice
from backoffice.services import idempotency_service
from backoffice.time_utils import utcnow
from backoffice.validation import ConflictError

from conftest import safe_balance, stock


KEY_HEADER = "X-Idempotency-Key"


def _key(value):
    return {KEY_HEADER: value}


class TestCreateReplay:

    def test_same_key_creates_once(self, make_invoice, clerk_headers, brake_pad, safe):
        first = make_invoice(clerk_headers, [(brake_pad, 2)], safe_id=safe.id, extra_headers=_key("abc-1"))
        second = make_invoice(clerk_headers, [(brake_pad, 2)], safe_id=safe.id,
                              extra_headers=_key("abc-1"), expected_status=200)

        assert second.get_json() == first.get_json()
        assert db.session.query(SalesInvoice).count() == 1
        assert stock(brake_pad.id, "BranchA") == 8
        assert db.session.query(SafeTransaction).count() == 1
        assert safe_balance(safe.id) == (0, 10000)

    def test_no_key_means_no_deduplication(self, make_invoice, clerk_headers, oil_filter):
        make_invoice(clerk_headers, [(oil_filter, 1)])
        make_invoice(clerk_headers, [(oil_filter, 1)])
        assert db.session.query(SalesInvoice).count() == 2
        assert db.session.query(IdempotencyKey).count() == 0

    def test_failed_attempt_releases_key(self, make_invoice, clerk_headers, oil_filter):
        make_invoice(clerk_headers, [(oil_filter, 99)], extra_headers=_key("retry-me"), expected_status=400)
        assert db.session.get(IdempotencyKey, "retry-me") is None

        make_invoice(clerk_headers, [(oil_filter, 1)], extra_headers=_key("retry-me"))
        row = db.session.get(IdempotencyKey, "retry-me")
        assert row.status == idempotency_service.STATUS_COMPLETED
        assert row.response_status == 201

    def test_in_progress_key_answers_being_processed(self, make_invoice, clerk, clerk_headers, oil_filter):
        db.session.add(IdempotencyKey(key="busy", scope=f"invoice.create:{clerk.id}", status="PENDING",
                                      created_at=utcnow()))
        db.session.commit()

        resp = make_invoice(clerk_headers, [(oil_filter, 1)], extra_headers=_key("busy"), expected_status=200)
        assert resp.get_json() == {"message": "Request is being processed"}
        assert db.session.query(SalesInvoice).count() == 0
        assert stock(oil_filter.id, "BranchA") == 20

    def test_key_reused_for_another_operation_conflicts(self, client, make_invoice, clerk_headers, brake_pad):
        invoice = make_invoice(clerk_headers, [(brake_pad, 2)], extra_headers=_key("shared")).get_json()["invoice"]

        headers = dict(clerk_headers)
        headers.update(_key("shared"))
        resp = client.post(f"/api/invoices/{invoice['id']}/return", json={
            "return_items": [{"item_id": invoice["items"][0]["id"], "quantity": 1}],
        }, headers=headers)
        assert resp.status_code == 409
        assert stock(brake_pad.id, "BranchA") == 8

    def test_key_reused_by_another_user_conflicts(self, make_invoice, clerk_headers, other_clerk_headers,
                                                  brake_pad):
        make_invoice(clerk_headers, [(brake_pad, 2)], extra_headers=_key("k1"))

        resp = make_invoice(other_clerk_headers, [(brake_pad, 1)], customer_name="Other",
                            extra_headers=_key("k1"), expected_status=409)
        assert "invoice" not in resp.get_json()
        assert db.session.query(SalesInvoice).count() == 1
        assert stock(brake_pad.id, "BranchA") == 8

    def test_overlong_key_rejected(self, make_invoice, clerk_headers, oil_filter):
        make_invoice(clerk_headers, [(oil_filter, 1)], extra_headers=_key("k" * 200), expected_status=400)


class TestReturnReplay:

    def test_same_key_refunds_once(self, client, make_invoice, clerk_headers, brake_pad, safe):
        invoice = make_invoice(clerk_headers, [(brake_pad, 3)], safe_id=safe.id).get_json()["invoice"]
        headers = dict(clerk_headers)
        headers.update(_key("ret-1"))
        payload = {"return_items": [{"item_id": invoice["items"][0]["id"], "quantity": 1}]}

        first = client.post(f"/api/invoices/{invoice['id']}/return", json=payload, headers=headers)
        second = client.post(f"/api/invoices/{invoice['id']}/return", json=payload, headers=headers)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.get_json() == first.get_json()
        assert stock(brake_pad.id, "BranchA") == 8
        assert safe_balance(safe.id) == (0, 10000)


class TestConcurrentAcquire:
    """The insert of a key loses to a request that stored it first."""

    @staticmethod
    def _miss_first_lookup(monkeypatch):
        original_get = db.session.get
        calls = []

        def _get(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                return None
            return original_get(*args, **kwargs)

        monkeypatch.setattr(db.session, "get", _get)
        return calls

    def _seed(self, **fields):
        db.session.add(IdempotencyKey(key="raced", created_at=utcnow(), **fields))
        db.session.commit()
        db.session.expunge_all()

    def test_losing_insert_reads_pending_winner(self, db_session, monkeypatch):
        self._seed(scope="invoice.create:1", status="PENDING")
        calls = self._miss_first_lookup(monkeypatch)

        result = idempotency_service.acquire("raced", "invoice.create:1")

        assert len(calls) == 2
        assert result.state == idempotency_service.IN_PROGRESS
        assert result.body == {"message": "Request is being processed"}
        assert db.session.query(IdempotencyKey).count() == 1

    def test_losing_insert_replays_completed_winner(self, db_session, monkeypatch):
        self._seed(scope="invoice.create:1", status="COMPLETED", response_status=201,
                   response_body='{"invoice": {"id": 5}}', completed_at=utcnow())
        self._miss_first_lookup(monkeypatch)

        result = idempotency_service.acquire("raced", "invoice.create:1")

        assert result.state == idempotency_service.REPLAY
        assert result.status == 201
        assert result.body == {"invoice": {"id": 5}}

    def test_losing_insert_for_another_scope_conflicts(self, db_session, monkeypatch):
        self._seed(scope="invoice.create:2", status="PENDING")
        self._miss_first_lookup(monkeypatch)

        with pytest.raises(ConflictError):
            idempotency_service.acquire("raced", "invoice.create:1")


class TestPurge:

    def test_purges_only_old_completed_keys(self, db_session):
        old = utcnow() - timedelta(days=10)
        db.session.add_all([
            IdempotencyKey(key="old-done", scope="invoice.create", status="COMPLETED",
                           response_status=201, response_body="{}", created_at=old, completed_at=old),
            IdempotencyKey(key="new-done", scope="invoice.create", status="COMPLETED",
                           response_status=201, response_body="{}", created_at=utcnow()),
            IdempotencyKey(key="old-pending", scope="invoice.create", status="PENDING", created_at=old),
        ])
        db.session.commit()

        assert idempotency_service.purge_completed(7) == 1
        remaining = {row.key for row in db.session.query(IdempotencyKey)}
        assert remaining == {"new-done", "old-pending"}
