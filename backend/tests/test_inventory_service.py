# Inventory counter tests
#
# Tests for:
# - reserve / release / consume / restock arithmetic
# - InsufficientStock and Inconsistency rejections
# - manual adjustment floor and reservation guard
# - deterministic multi-product locking

import pytest

from backoffice.extensions import db
from backoffice.errors import (
    ValidationError,
    NotFoundError,
    InvalidProductError,
    InvalidStateError,
    InsufficientStockError,
    InconsistencyError,
)
from backoffice.models import Product
from backoffice.services import inventory_service


@pytest.mark.inventory
class TestReservations:

    def test_reserve_then_release_restores_reserved(self, db_session, product):
        inventory_service.reserve(product, 4)
        assert product.reserved == 4
        assert product.available == 6

        inventory_service.release(product, 4)
        assert product.reserved == 0
        assert product.stock == 10

    def test_reserve_more_than_available_is_rejected(self, db_session, make_product):
        p = make_product(stock=5, reserved=3)

        with pytest.raises(InsufficientStockError) as exc:
            inventory_service.reserve(p, 3)

        assert exc.value.details["available"] == 2
        assert exc.value.details["requested_quantity"] == 3
        assert p.reserved == 3

    def test_release_below_zero_is_inconsistency(self, db_session, make_product):
        """
        SCENARIO: releasing more than is reserved
        EXPECTED: InconsistencyError, counter untouched (never floored)
        """
        p = make_product(stock=5, reserved=1)

        with pytest.raises(InconsistencyError):
            inventory_service.release(p, 2)

        assert p.reserved == 1

    def test_consume_moves_reservation_out_of_stock(self, db_session, make_product):
        p = make_product(stock=5, reserved=5)

        inventory_service.consume(p, 5)

        assert p.stock == 0
        assert p.reserved == 0

    def test_consume_without_reservation_is_inconsistency(self, db_session, make_product):
        p = make_product(stock=5, reserved=0)

        with pytest.raises(InconsistencyError):
            inventory_service.consume(p, 1)

    def test_restock_has_no_upper_bound(self, db_session, product):
        inventory_service.restock(product, 1000)
        assert product.stock == 1010

    @pytest.mark.parametrize("qty", [0, -1, 1.5, "2", True])
    def test_quantity_must_be_positive_int(self, db_session, product, qty):
        with pytest.raises(ValidationError):
            inventory_service.reserve(product, qty)


@pytest.mark.inventory
class TestAdjust:

    def test_adjust_floors_at_zero(self, db_session, make_product):
        p = make_product(stock=3)

        inventory_service.adjust_stock(p.id, -10)

        assert db.session.get(Product, p.id).stock == 0

    def test_adjust_below_reserved_is_rejected(self, db_session, make_product):
        """
        SCENARIO: stock=5 with 4 reserved, correction of -3
        EXPECTED: InvalidStateError, nothing committed
        """
        p = make_product(stock=5, reserved=4)

        with pytest.raises(InvalidStateError):
            inventory_service.adjust_stock(p.id, -3)

        refreshed = db.session.get(Product, p.id)
        assert refreshed.stock == 5
        assert refreshed.reserved == 4

    def test_adjust_zero_delta_is_invalid(self, db_session, product):
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product.id, 0)

    def test_adjust_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.adjust_stock(9999, 1)


@pytest.mark.inventory
class TestLockProducts:

    def test_returns_products_by_id(self, db_session, make_product):
        a = make_product()
        b = make_product()

        locked = inventory_service.lock_products([b.id, a.id, b.id])

        assert set(locked) == {a.id, b.id}

    def test_missing_id_raises_invalid_product(self, db_session, product):
        with pytest.raises(InvalidProductError) as exc:
            inventory_service.lock_products([product.id, 424242])

        assert exc.value.details["product_id"] == 424242
        assert exc.value.http_status == 400

    def test_stock_summary(self, db_session, make_product):
        p = make_product(stock=8, reserved=3)

        summary = inventory_service.get_stock_summary(p.id)

        assert summary == {
            "product_id": p.id,
            "sku": p.sku,
            "stock": 8,
            "reserved": 3,
            "available": 5,
        }
