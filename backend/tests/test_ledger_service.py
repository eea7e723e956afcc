# Customer ledger tests
#
# Tests for:
# - balance column kept equal to the sum of entries
# - record_entry validation
# - list filters, pagination clamp and filtered balance
# - reconciliation report

from datetime import datetime

import pytest
from sqlalchemy import update

from backoffice.extensions import db
from backoffice.errors import ValidationError, NotFoundError
from backoffice.models import Customer, LedgerEntry
from backoffice.services import ledger_service


def at(day):
    return datetime(2024, 3, day, 12, 0)


def post(customer_id, type, amount_cents, *, source_id="1", description=None, occurred_at=None):
    entry = ledger_service.record_entry(
        customer_id=customer_id,
        type=type,
        source_type=type,
        source_id=source_id,
        amount_cents=amount_cents,
        description=description,
        occurred_at=occurred_at,
    )
    db.session.commit()
    return entry


@pytest.mark.ledger
class TestRecordEntry:

    def test_balance_tracks_sum_of_entries(self, db_session, customer):
        """
        SCENARIO: order +2000, payment -500, credit note -300
        EXPECTED: balance column == SUM(amount_cents) == 1200
        """
        post(customer.id, "order", 2000, source_id="10")
        post(customer.id, "payment", -500, source_id="abc")
        post(customer.id, "credit_note", -300, source_id="3")

        refreshed = db.session.get(Customer, customer.id)
        assert refreshed.balance_cents == 1200
        assert ledger_service.customer_balance(customer.id) == 1200

    def test_entry_without_customer_leaves_balances_alone(self, db_session, customer):
        entry = post(None, "order", 700)

        assert entry.customer_id is None
        assert db.session.get(Customer, customer.id).balance_cents == 0

    def test_unknown_customer(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.record_entry(
                customer_id=404, type="order", source_type="order",
                source_id="1", amount_cents=100,
            )

    @pytest.mark.parametrize("field, value", [
        ("type", "refund"),
        ("source_type", "invoice"),
        ("source_id", ""),
        ("amount_cents", 1.5),
    ])
    def test_rejects_bad_fields(self, db_session, customer, field, value):
        kwargs = dict(
            customer_id=customer.id, type="order", source_type="order",
            source_id="1", amount_cents=100,
        )
        kwargs[field] = value

        with pytest.raises(ValidationError):
            ledger_service.record_entry(**kwargs)


@pytest.mark.ledger
class TestListEntries:

    def test_filters_and_filtered_balance(self, db_session, customer, make_customer):
        other = make_customer("Luis Pérez")
        post(customer.id, "order", 1000, occurred_at=at(1), description="Order PED001")
        post(customer.id, "payment", -400, source_id="p1", occurred_at=at(5))
        post(customer.id, "order", 600, occurred_at=at(10), description="Order PED007")
        post(other.id, "order", 999, occurred_at=at(5))

        mine = ledger_service.list_entries(customer_id=customer.id)
        assert mine["total"] == 3
        assert mine["balance_cents"] == 1200

        orders = ledger_service.list_entries(customer_id=customer.id, type="order")
        assert orders["balance_cents"] == 1600

        window = ledger_service.list_entries(date_from=at(2), date_to=at(6))
        assert window["total"] == 2
        assert window["balance_cents"] == 599

        search = ledger_service.list_entries(q="ped007")
        assert [e["amount_cents"] for e in search["items"]] == [600]

    def test_newest_first(self, db_session, customer):
        post(customer.id, "order", 1, occurred_at=at(1))
        post(customer.id, "order", 2, occurred_at=at(3))
        post(customer.id, "order", 3, occurred_at=at(2))

        result = ledger_service.list_entries(customer_id=customer.id)

        assert [e["amount_cents"] for e in result["items"]] == [2, 3, 1]

    def test_balance_ignores_pagination(self, db_session, customer):
        for day in range(1, 6):
            post(customer.id, "order", 100, source_id=str(day), occurred_at=at(day))

        page = ledger_service.list_entries(customer_id=customer.id, page=2, page_size=2)

        assert len(page["items"]) == 2
        assert page["total"] == 5
        assert page["balance_cents"] == 500

    def test_page_size_is_clamped(self, db_session):
        result = ledger_service.list_entries(page=0, page_size=10_000)
        assert result["page"] == 1
        assert result["page_size"] == ledger_service.MAX_PAGE_SIZE

    def test_unknown_type_filter(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.list_entries(type="refund")


@pytest.mark.ledger
class TestReconciliation:

    def test_healthy_database_has_no_mismatches(self, db_session, customer):
        post(customer.id, "order", 500)
        assert ledger_service.find_balance_mismatches() == []

    def test_drifted_balance_is_reported(self, db_session, customer):
        post(customer.id, "order", 500)
        db.session.execute(
            update(Customer).where(Customer.id == customer.id).values(balance_cents=450)
        )
        db.session.commit()

        mismatches = ledger_service.find_balance_mismatches()

        assert mismatches == [{
            "customer_id": customer.id,
            "name": "Ana Torres",
            "balance_cents": 450,
            "ledger_cents": 500,
            "difference_cents": -50,
        }]
        assert db.session.query(LedgerEntry).count() == 1
