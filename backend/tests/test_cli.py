# Overview: Pytest coverage for the Flask CLI command groups.

from datetime import date

from devicetrack.extensions import db
from devicetrack.models import User
from devicetrack.permissions import Role
from devicetrack.services import user_service


class TestSystemCommands:

    def test_init_db_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "Database schema ready" in result.output


class TestUserCommands:

    def test_create_superadmin_prints_password_once(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(
            args=["users", "create-superadmin", "--name", "Owner", "--email", "owner@example.com"]
        )
        assert result.exit_code == 0, result.output
        assert "Created superadmin owner@example.com" in result.output

        password = next(
            line.split("Password:", 1)[1].strip()
            for line in result.output.splitlines()
            if "Password:" in line
        )
        user = db.session.query(User).filter_by(email="owner@example.com").one()
        assert user.role == "superadmin"
        assert user_service.verify_password(password, user.password_hash)

    def test_duplicate_email_fails_cleanly(self, app, db_session, make_user):
        existing = make_user(Role.ADMIN)
        runner = app.test_cli_runner()
        result = runner.invoke(
            args=["users", "create-superadmin", "--name", "Owner", "--email", existing.email]
        )
        assert result.exit_code != 0
        assert "already registered" in result.output


class TestInspectionCommands:

    def test_overdue_listing(self, app, db_session, stock_store, sell):
        sale = sell(stock_store(1)[0], emi={
            "total_installments": 4,
            "emi_amount_cents": 25_00,
            "next_emi_date": date(2024, 2, 15),
        })
        runner = app.test_cli_runner()

        result = runner.invoke(args=["emis", "overdue", "--as-of", "2024-03-01"])
        assert result.exit_code == 0, result.output
        assert sale.invoice_number in result.output
        assert "Asha Rao" in result.output

        result = runner.invoke(args=["emis", "overdue", "--as-of", "2024-02-01"])
        assert "No overdue EMIs as of 2024-02-01." in result.output

    def test_overdue_bad_date(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["emis", "overdue", "--as-of", "soon"])
        assert result.exit_code == 2

    def test_device_history(self, app, db_session, stock_store):
        device = stock_store(1)[0]
        code = device.device_code
        result = app.test_cli_runner().invoke(args=["devices", "history", code])
        assert result.exit_code == 0, result.output
        assert f"History for {code} (3 entries)" in result.output
        assert "received" in result.output

    def test_unknown_device_history(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["devices", "history", "NOPE-1"])
        assert result.exit_code != 0
        assert "No history for device NOPE-1" in result.output
