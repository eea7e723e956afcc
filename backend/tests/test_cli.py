# CLI command tests
#
# Tests for:
# - ledger reconcile exit status and output
# - cash status report printing

import pytest
from sqlalchemy import update

from backoffice.extensions import db
from backoffice.models import Customer
from backoffice.services import cash_service, customer_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.mark.cli
class TestLedgerReconcile:

    def test_pass_when_balances_match(self, runner, db_session, customer):
        customer_service.adjust_balance(customer.id, 700)

        result = runner.invoke(args=["ledger", "reconcile"])

        assert result.exit_code == 0
        assert "PASS" in result.output

    def test_fail_lists_drifted_customers(self, runner, db_session, customer):
        customer_service.adjust_balance(customer.id, 700)
        db.session.execute(
            update(Customer).where(Customer.id == customer.id).values(balance_cents=0)
        )
        db.session.commit()

        result = runner.invoke(args=["ledger", "reconcile"])

        assert result.exit_code == 1
        assert f"FAIL customer={customer.id}" in result.output
        assert "diff=-700" in result.output


@pytest.mark.cli
@pytest.mark.cash
class TestCashStatus:

    def test_day_without_session(self, runner, db_session):
        result = runner.invoke(args=["cash", "status", "--date", "2024-01-02"])

        assert result.exit_code == 0
        assert "No cash session for 2024-01-02" in result.output

    def test_open_session_report(self, runner, db_session):
        cash_service.open_session(1000)
        cash_service.record_movement(-250, "expense", "Ice")

        result = runner.invoke(args=["cash", "status"])

        assert result.exit_code == 0
        assert result.output.startswith("OPEN ")
        assert "balance : 750" in result.output

    def test_bad_date(self, runner, db_session):
        result = runner.invoke(args=["cash", "status", "--date", "tomorrow"])
        assert result.exit_code != 0


@pytest.mark.cli
class TestSystemCommands:

    def test_init_db_is_idempotent(self, runner, db_session, product):
        result = runner.invoke(args=["system", "init-db"])

        assert result.exit_code == 0
        assert "PASS" in result.output
        assert db.session.get(type(product), product.id) is not None

    def test_reset_db_requires_confirmation(self, runner, db_session, product):
        result = runner.invoke(args=["system", "reset-db"], input="n\n")

        assert result.exit_code != 0
        assert db.session.get(type(product), product.id) is not None
