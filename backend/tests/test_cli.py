# Overview: Pytest coverage for the Flask CLI commands.

import pytest

from conftest import add_balance
from pharmadist.models import Location, Tenant, User, Warehouse
from pharmadist.services.session_service import validate_session


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


class TestSystemInit:

    def test_init_is_idempotent(self, runner, db_session):
        first = runner.invoke(args=["system", "init", "--tenant-code", "DEMO"])
        second = runner.invoke(args=["system", "init", "--tenant-code", "DEMO"])

        assert first.exit_code == 0, first.output
        assert "Created tenant" in first.output
        assert "already exists" in second.output
        assert db_session.query(Tenant).filter_by(code="DEMO").count() == 1
        assert {w.city for w in db_session.query(Warehouse).all()} == {"LP", "SC"}
        assert db_session.query(Location).count() == 2
        assert db_session.query(User).filter_by(email="admin@pharmadist.local").one().role == "ADMIN"

    def test_reset_requires_confirmation(self, runner, world):
        result = runner.invoke(args=["system", "reset-db"])
        assert result.exit_code == 1
        assert "Refusing" in result.output


class TestUserCommands:

    def test_issue_token_prints_a_working_token(self, runner, world):
        result = runner.invoke(args=["users", "issue-token", "--email", world.users.lp_seller.email])

        assert result.exit_code == 0, result.output
        token = result.output.strip().splitlines()[-1]
        user, actor = validate_session(token)
        assert user.id == world.users.lp_seller.id
        assert actor.branch_city == "LP"

    def test_issue_token_unknown_user(self, runner, world):
        result = runner.invoke(args=["users", "issue-token", "--email", "nobody@andina.test"])
        assert result.exit_code == 1

    def test_create_branch_user(self, runner, world, db_session):
        result = runner.invoke(args=[
            "users", "create",
            "--tenant-id", str(world.tenant.id),
            "--email", "nuevo@andina.test",
            "--role", "BRANCH_WAREHOUSE",
            "--warehouse-id", str(world.warehouses["SC"].id),
        ])

        assert result.exit_code == 0, result.output
        user = db_session.query(User).filter_by(email="nuevo@andina.test").one()
        assert user.warehouse.city == "SC"

    def test_create_rejects_foreign_warehouse(self, runner, world, other_world):
        result = runner.invoke(args=[
            "users", "create",
            "--tenant-id", str(world.tenant.id),
            "--email", "x@andina.test",
            "--warehouse-id", str(other_world.warehouses["LP"].id),
        ])
        assert result.exit_code == 1

    def test_list(self, runner, world):
        result = runner.invoke(args=["users", "list", "--tenant-id", str(world.tenant.id)])
        assert "admin@andina.test" in result.output
        assert "city=LP" in result.output


class TestCheckInvariants:

    def test_clean_balances_pass(self, runner, world):
        add_balance(world.paracetamol, world.lp, 10, reserved=4)

        result = runner.invoke(args=["stock", "check-invariants"])

        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_over_reserved_balance_fails(self, runner, world):
        bad = add_balance(world.paracetamol, world.lp, 3, reserved=5)

        result = runner.invoke(args=["stock", "check-invariants", "--tenant-id", str(world.tenant.id)])

        assert result.exit_code == 1
        assert f"FAIL balance {bad.id}" in result.output
