"""
CLI command and system endpoint tests.
"""

from backoffice.extensions import db
from backoffice.models import Safe, User
from backoffice.services import invoice_service, safe_service

from conftest import safe_balance


def _run(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


class TestSystemCommands:

    def test_init_is_idempotent(self, app, db_session):
        result = _run(app, "system", "init")
        assert result.exit_code == 0, result.output
        assert "PASS Created user: owner with role 'owner'" in result.output
        assert "PASS Created safe: SAFE-BRANCHA" in result.output
        assert db.session.query(User).count() == 3
        assert db.session.query(Safe).count() == 2

        result = _run(app, "system", "init")
        assert result.exit_code == 0
        assert "User 'owner' already exists" in result.output
        assert "Safe 'SAFE-BRANCHB' already exists" in result.output
        assert db.session.query(User).count() == 3

    def test_reset_db(self, app, owner):
        db.session.remove()
        result = _run(app, "system", "reset-db", "--yes")
        assert result.exit_code == 0, result.output
        assert "Database reset complete" in result.output
        assert db.session.query(User).count() == 0


class TestUserCommands:

    def test_create_and_list(self, app, db_session):
        result = _run(app, "users", "create", "--username", "sara", "--password", "Password123!",
                      "--role", "stock_manager")
        assert result.exit_code == 0, result.output
        assert "PASS Created user sara" in result.output

        result = _run(app, "users", "list")
        assert "sara" in result.output
        assert "stock_manager" in result.output

    def test_weak_password_fails(self, app, db_session):
        result = _run(app, "users", "create", "--username", "sara", "--password", "weak")
        assert result.exit_code != 0
        assert "at least 8 characters" in result.output
        assert db.session.query(User).count() == 0


class TestMaintenanceCommands:

    def test_outbox_dispatch_and_failed(self, app, clerk, brake_pad, safe):
        invoice_service.create_invoice({
            "customer_name": "Walk-in",
            "branch": "BranchA",
            "items": [{"product_id": brake_pad.id, "quantity": 1}],
            "safe_id": safe.id,
        }, clerk)

        result = _run(app, "outbox", "dispatch")
        assert result.exit_code == 0, result.output
        assert "Dispatched 3 event(s), 0 failed" in result.output
        assert safe_balance(safe.id) == (0, 5000)

        assert "No failed events." in _run(app, "outbox", "failed").output

    def test_reconcile_reports_and_fixes(self, app, safe):
        safe_service.post_transaction(safe_id=safe.id, type="deposit", amount_lyd_cents=1200)
        db.session.commit()
        result = _run(app, "safes", "reconcile")
        assert result.exit_code == 0
        assert "PASS MAIN: usd=0 lyd=1200" in result.output

        db.session.get(Safe, safe.id).balance_lyd_cents = 50
        db.session.commit()

        result = _run(app, "safes", "reconcile")
        assert result.exit_code != 0
        assert "FAIL MAIN" in result.output

        result = _run(app, "safes", "reconcile", "--safe-id", str(safe.id), "--fix")
        assert result.exit_code == 0, result.output
        assert "FIXED MAIN" in result.output
        assert safe_balance(safe.id) == (0, 1200)

    def test_idempotency_purge(self, app, db_session):
        result = _run(app, "idempotency", "purge", "--days", "7")
        assert result.exit_code == 0
        assert "PASS Purged 0 idempotency key(s)" in result.output


class TestSystemEndpoints:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["outbox"]["details"] == {"pending": 0, "failed": 0}

    def test_version(self, client, db_session):
        body = client.get("/version").get_json()
        assert body["environment"] == "testing"
        assert body["branches"] == ["BranchA", "BranchB"]
