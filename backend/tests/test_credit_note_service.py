# Credit note tests
#
# Tests for:
# - quantity clamping against what is still returnable
# - restock, order status recomputation and ledger credit
# - cash refunds booked as drawer expenses
# - return-by-product spreading and tax rounding
# - state and amount rejections

import pytest

from backoffice.extensions import db
from backoffice.errors import (
    ValidationError,
    OrderNotFoundError,
    InvalidStateError,
    NoValidItemsError,
    ZeroAmountError,
)
from backoffice.models import Product, Order, Customer, CashMovement, LedgerEntry, CreditNote
from backoffice.models.cash import MOVEMENT_EXPENSE
from backoffice.models.ledger import LEDGER_TYPE_CREDIT_NOTE
from backoffice.services import order_service, credit_note_service
from backoffice.services.credit_note_service import (
    ReturnByOrderItem,
    ReturnByProduct,
    parse_line,
    compute_tax_cents,
    round_half_up_div,
)


def confirmed_order(product, quantity, customer=None):
    order = order_service.create_order(
        [{"product_id": product.id, "quantity": quantity}],
        customer_id=customer.id if customer else None,
    )
    return order_service.confirm_order(order.id)


@pytest.mark.returns
class TestCreateCreditNote:

    def test_full_return_with_clamping(self, db_session, make_product, customer):
        """
        SCENARIO: confirmed order of 5 units, return requested for 8
        EXPECTED: clamped to 5, stock +5, order returned, ledger -total
        """
        p = make_product(stock=5, price_cents=1000)
        order = confirmed_order(p, 5, customer)
        item_id = order.items[0].id
        assert db.session.get(Product, p.id).stock == 0

        note = credit_note_service.create_credit_note(
            order.id,
            [ReturnByOrderItem(order_item_id=item_id, quantity=8)],
            refund_method="credit",
        )

        assert note.number == "NC0001"
        assert [line.quantity for line in note.lines] == [5]
        assert note.subtotal_cents == -5000
        assert note.tax_cents == -1050
        assert note.total_cents == -6050
        assert db.session.get(Product, p.id).stock == 5

        refreshed = db.session.get(Order, order.id)
        assert refreshed.status == "returned"
        assert refreshed.items[0].returned_qty == 5

        entry = db.session.query(LedgerEntry).filter_by(type=LEDGER_TYPE_CREDIT_NOTE).one()
        assert entry.amount_cents == -6050
        assert entry.source_id == str(note.id)
        assert db.session.get(Customer, customer.id).balance_cents == 5000 - 6050

    def test_partial_then_rest(self, db_session, product):
        order = confirmed_order(product, 5)
        item_id = order.items[0].id

        credit_note_service.create_credit_note(
            order.id, [{"order_item_id": item_id, "quantity": 2}], refund_method="credit",
        )
        assert db.session.get(Order, order.id).status == "partially_returned"

        second = credit_note_service.create_credit_note(
            order.id, [{"order_item_id": item_id, "quantity": 10}], refund_method="credit",
        )
        assert second.number == "NC0002"
        assert second.lines[0].quantity == 3
        assert db.session.get(Order, order.id).status == "returned"
        assert db.session.get(Product, product.id).stock == 10

    def test_fully_returned_order_has_nothing_left(self, db_session, product):
        order = confirmed_order(product, 1)
        item_id = order.items[0].id
        credit_note_service.create_credit_note(
            order.id, [ReturnByOrderItem(item_id, 1)], refund_method="credit",
        )

        with pytest.raises(NoValidItemsError):
            credit_note_service.create_credit_note(
                order.id, [ReturnByOrderItem(item_id, 1)], refund_method="credit",
            )
        assert db.session.query(CreditNote).count() == 1

    def test_cash_refund_books_expense(self, db_session, product):
        order = confirmed_order(product, 2)

        note = credit_note_service.create_credit_note(
            order.id,
            [ReturnByOrderItem(order.items[0].id, 1, tax_rate_bps=0)],
            refund_method="cash",
            reason="Damaged bag",
        )

        refund = db.session.query(CashMovement).filter_by(credit_note_id=note.id).one()
        assert refund.type == MOVEMENT_EXPENSE
        assert refund.amount_cents == -1000
        assert refund.order_id == order.id

    def test_credit_refund_leaves_drawer_alone(self, db_session, product):
        order = confirmed_order(product, 2)
        movements_before = db.session.query(CashMovement).count()

        credit_note_service.create_credit_note(
            order.id, [ReturnByOrderItem(order.items[0].id, 1)], refund_method="credit",
        )

        assert db.session.query(CashMovement).count() == movements_before

    def test_customer_can_be_given_for_anonymous_order(self, db_session, product, customer):
        order = confirmed_order(product, 1)

        note = credit_note_service.create_credit_note(
            order.id,
            [ReturnByOrderItem(order.items[0].id, 1, tax_rate_bps=0)],
            refund_method="credit",
            customer_id=customer.id,
        )

        assert note.customer_id == customer.id
        assert db.session.get(Customer, customer.id).balance_cents == -1000


@pytest.mark.returns
class TestReturnByProduct:

    def test_spreads_over_order_items_with_discount_once(self, db_session, make_product):
        """
        SCENARIO: two order lines of the same product (2 + 3 units), return 4
        EXPECTED: 2 from the first line (with the discount), 2 from the second
        """
        p = make_product(stock=10, price_cents=1000)
        order = order_service.create_order([
            {"product_id": p.id, "quantity": 2},
            {"product_id": p.id, "quantity": 3},
        ])
        order = order_service.confirm_order(order.id)

        note = credit_note_service.create_credit_note(
            order.id,
            [ReturnByProduct(product_id=p.id, quantity=4, discount_cents=100, tax_rate_bps=0)],
            refund_method="credit",
        )

        assert [(line.quantity, line.discount_cents) for line in note.lines] == [(2, 100), (2, 0)]
        assert note.total_cents == -(1900 + 2000)
        assert db.session.get(Product, p.id).stock == 9

    def test_product_not_in_order(self, db_session, product, make_product):
        order = confirmed_order(product, 1)
        stranger = make_product()

        with pytest.raises(ValidationError):
            credit_note_service.create_credit_note(
                order.id, [ReturnByProduct(stranger.id, 1)], refund_method="credit",
            )


@pytest.mark.returns
class TestRejections:

    def test_pending_order(self, db_session, product):
        order = order_service.create_order([{"product_id": product.id, "quantity": 1}])

        with pytest.raises(InvalidStateError):
            credit_note_service.create_credit_note(
                order.id, [ReturnByOrderItem(order.items[0].id, 1)], refund_method="credit",
            )

    def test_canceled_order(self, db_session, product):
        order = order_service.create_order([{"product_id": product.id, "quantity": 1}])
        order_service.cancel_order(order.id)

        with pytest.raises(InvalidStateError):
            credit_note_service.create_credit_note(
                order.id, [ReturnByOrderItem(order.items[0].id, 1)], refund_method="credit",
            )

    def test_unknown_order(self, db_session):
        with pytest.raises(OrderNotFoundError):
            credit_note_service.create_credit_note(
                999, [ReturnByOrderItem(1, 1)], refund_method="credit",
            )

    def test_zero_total_rolls_back(self, db_session, product):
        order = confirmed_order(product, 2)
        item_id = order.items[0].id

        with pytest.raises(ZeroAmountError):
            credit_note_service.create_credit_note(
                order.id,
                [ReturnByOrderItem(item_id, 1, unit_price_cents=0)],
                refund_method="cash",
            )

        refreshed = db.session.get(Order, order.id)
        assert refreshed.status == "confirmed"
        assert refreshed.items[0].returned_qty == 0
        assert db.session.get(Product, product.id).stock == 8

    def test_unknown_refund_method(self, db_session, product):
        order = confirmed_order(product, 1)
        with pytest.raises(ValidationError):
            credit_note_service.create_credit_note(
                order.id, [ReturnByOrderItem(order.items[0].id, 1)], refund_method="voucher",
            )

    def test_item_from_another_order(self, db_session, product):
        first = confirmed_order(product, 1)
        second = confirmed_order(product, 1)

        with pytest.raises(ValidationError):
            credit_note_service.create_credit_note(
                first.id, [ReturnByOrderItem(second.items[0].id, 1)], refund_method="credit",
            )


@pytest.mark.returns
class TestLineParsingAndTax:

    def test_parse_line_requires_exactly_one_reference(self):
        with pytest.raises(ValidationError):
            parse_line({"quantity": 1})
        with pytest.raises(ValidationError):
            parse_line({"order_item_id": 1, "product_id": 2, "quantity": 1})

    def test_parse_line_shapes(self):
        assert parse_line({"order_item_id": 3, "quantity": 2}) == ReturnByOrderItem(3, 2)
        assert parse_line({"product_id": 4, "quantity": 1, "tax_rate_bps": 1050}) == ReturnByProduct(
            4, 1, tax_rate_bps=1050,
        )

    @pytest.mark.parametrize("base, rate, expected", [
        (1000, 2100, 210),
        (50, 2100, 11),     # 10.5 rounds up
        (333, 2100, 70),    # 69.93
        (1, 1050, 0),       # 0.105
        (0, 2100, 0),
    ])
    def test_tax_rounds_half_up(self, base, rate, expected):
        assert compute_tax_cents(base, rate) == expected

    def test_round_half_up_is_symmetric(self):
        assert round_half_up_div(5, 2) == 3
        assert round_half_up_div(-5, 2) == -3
