# Counter checkout tests
#
# Tests for:
# - global discount allocation (largest remainder)
# - cash retained vs change with mixed payments
# - all-or-nothing behaviour on insufficient payment
# - customer charge settled in the same sale

import pytest

from backoffice.extensions import db
from backoffice.errors import ValidationError, InsufficientPaymentError
from backoffice.models import Product, Order, Customer, CashMovement, LedgerEntry
from backoffice.services import order_service
from backoffice.services.order_service import allocate_discount


@pytest.mark.orders
class TestAllocateDiscount:

    @pytest.mark.parametrize("amounts, discount, expected", [
        ([1000, 1000], 301, [151, 150]),
        ([1, 1, 1], 2, [1, 1, 0]),
        ([700, 300], 100, [70, 30]),
        ([500, 0], 200, [200, 0]),
        ([100, 200], 0, [0, 0]),
    ])
    def test_shares(self, amounts, discount, expected):
        assert allocate_discount(amounts, discount) == expected

    def test_shares_sum_to_discount_and_respect_amounts(self):
        amounts = [333, 1, 999, 57]
        shares = allocate_discount(amounts, sum(amounts))
        assert shares == amounts


@pytest.mark.orders
@pytest.mark.cash
class TestCheckout:

    def test_mixed_payment_books_retained_cash(self, db_session, make_product):
        """
        SCENARIO: 1x10.00 + 2x5.00, global discount 3.01, paid 10.00 debit + 10.00 cash
        EXPECTED: total 16.99, sale movement 6.99, change 3.01
        """
        a = make_product(price_cents=1000)
        b = make_product(price_cents=500)

        result = order_service.checkout(
            [
                {"product_id": a.id, "quantity": 1},
                {"product_id": b.id, "quantity": 2},
            ],
            [
                {"method": "debit", "amount_cents": 1000},
                {"method": "cash", "amount_cents": 1000},
            ],
            discount_global_cents=301,
        )

        assert result["total_cents"] == 1699
        assert result["paid_cents"] == 2000
        assert result["cash_cents"] == 699
        assert result["change_cents"] == 301
        assert result["order"]["status"] == "confirmed"

        items = {i["product_id"]: i for i in result["order"]["items"]}
        assert items[a.id]["line_total_cents"] == 849
        assert items[b.id]["line_total_cents"] == 850

        sale = db.session.query(CashMovement).one()
        assert sale.amount_cents == 699
        assert db.session.get(Product, a.id).stock == 9
        assert db.session.get(Product, b.id).reserved == 0

    def test_unit_discount_applies_per_unit(self, db_session, product):
        result = order_service.checkout(
            [{"product_id": product.id, "quantity": 3, "discount_cents": 100}],
            [{"method": "cash", "amount_cents": 3000}],
        )

        assert result["total_cents"] == 2700
        assert result["order"]["items"][0]["discount_cents"] == 300

    def test_card_only_sale_books_no_cash(self, db_session, product):
        result = order_service.checkout(
            [{"product_id": product.id, "quantity": 1}],
            [{"method": "credit", "amount_cents": 1000}],
        )

        assert result["cash_cents"] == 0
        assert db.session.query(CashMovement).count() == 0

    def test_insufficient_payment_persists_nothing(self, db_session, product):
        with pytest.raises(InsufficientPaymentError):
            order_service.checkout(
                [{"product_id": product.id, "quantity": 2}],
                [{"method": "cash", "amount_cents": 1999}],
            )

        assert db.session.query(Order).count() == 0
        assert db.session.query(CashMovement).count() == 0
        refreshed = db.session.get(Product, product.id)
        assert (refreshed.stock, refreshed.reserved) == (10, 0)

    def test_customer_charge_is_settled(self, db_session, product, customer):
        result = order_service.checkout(
            [{"product_id": product.id, "quantity": 1}],
            [{"method": "cash", "amount_cents": 1000}],
            customer_id=customer.id,
        )

        entries = (
            db.session.query(LedgerEntry)
            .filter_by(customer_id=customer.id)
            .order_by(LedgerEntry.id)
            .all()
        )
        assert [(e.type, e.amount_cents) for e in entries] == [("order", 1000), ("payment", -1000)]
        assert all(e.source_id == str(result["order"]["id"]) for e in entries)
        assert db.session.get(Customer, customer.id).balance_cents == 0

    def test_global_discount_above_subtotal(self, db_session, product):
        with pytest.raises(ValidationError):
            order_service.checkout(
                [{"product_id": product.id, "quantity": 1}],
                [{"method": "cash", "amount_cents": 1000}],
                discount_global_cents=1001,
            )

    def test_unknown_payment_method(self, db_session, product):
        with pytest.raises(ValidationError):
            order_service.checkout(
                [{"product_id": product.id, "quantity": 1}],
                [{"method": "voucher", "amount_cents": 1000}],
            )
