# Locking and competing-writer tests
#
# Tests for:
# - begin_write on a fresh and on an already-open session
# - document numbering when the first counter insert loses a race
# - parallel reservations against one product on a file-backed database

import threading

import pytest

from backoffice import create_app
from backoffice.config import CASH_POLICY_AUTO_CREATE
from backoffice.extensions import db
from backoffice.errors import InsufficientStockError
from backoffice.models import Product, Customer, Order, DocumentSequence
from backoffice.services import order_service, document_service
from backoffice.services.concurrency import begin_write


@pytest.mark.concurrency
class TestBeginWrite:

    def test_opens_transaction_on_idle_session(self, db_session):
        assert not db.session().in_transaction()

        begin_write()

        assert db.session().in_transaction()
        db.session.rollback()

    def test_reuses_open_transaction(self, db_session):
        db.session.add(Customer(name="Nested", balance_cents=0))
        db.session.flush()

        # A second BEGIN on SQLite would fail with "cannot start a transaction"
        begin_write()
        db.session.commit()

        assert db.session.query(Customer).filter_by(name="Nested").count() == 1


@pytest.mark.concurrency
class TestDocumentNumberRace:

    def test_lost_first_insert_falls_back_to_update(self, db_session, monkeypatch):
        """
        SCENARIO: the counter row appears between our UPDATE and our INSERT
        EXPECTED: the insert fails inside a savepoint, the UPDATE is retried,
                  and work already done in the transaction survives
        """
        db.session.add(DocumentSequence(document_type="ORDER", next_number=5))
        db.session.commit()

        kept = Customer(name="Kept", balance_cents=0)
        db.session.add(kept)
        db.session.flush()

        real_bump = document_service._bump
        calls = []

        def row_missing_once(document_type):
            calls.append(document_type)
            if len(calls) == 1:
                return None
            return real_bump(document_type)

        monkeypatch.setattr(document_service, "_bump", row_missing_once)

        number = document_service.next_document_number(document_type="ORDER", prefix="PED", pad=3)
        db.session.commit()

        assert number == "PED005"
        assert len(calls) == 2
        assert db.session.get(Customer, kept.id) is not None
        seq = db.session.query(DocumentSequence).filter_by(document_type="ORDER").one()
        assert seq.next_number == 6


@pytest.fixture
def file_app(tmp_path):
    """App on a file-backed SQLite database so each thread gets its own connection."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CASH_SESSION_POLICY': CASH_POLICY_AUTO_CREATE,
        'BUSINESS_TIMEZONE': 'UTC',
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.session.remove()
        db.engine.dispose()


@pytest.mark.concurrency
class TestParallelReservations:

    def test_stock_is_never_oversold(self, file_app):
        """
        SCENARIO: stock=10, 8 threads each create an order for 3 at once
        EXPECTED: exactly 10 // 3 = 3 succeed, the other 5 get
                  InsufficientStockError, and 0 <= reserved <= stock
        """
        stock, quantity, workers = 10, 3, 8

        with file_app.app_context():
            product = Product(sku="RAC001", name="Contended", price_cents=500, stock=stock, reserved=0)
            db.session.add(product)
            db.session.commit()
            product_id = product.id
            db.session.remove()

        outcomes = []
        lock = threading.Lock()
        start = threading.Barrier(workers)

        def worker():
            with file_app.app_context():
                try:
                    start.wait()
                    order_service.create_order([{"product_id": product_id, "quantity": quantity}])
                    outcome = "ok"
                except InsufficientStockError:
                    outcome = "insufficient"
                except Exception as exc:
                    outcome = repr(exc)
                finally:
                    db.session.remove()
                with lock:
                    outcomes.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["insufficient"] * 5 + ["ok"] * 3

        with file_app.app_context():
            product = db.session.get(Product, product_id)
            assert product.stock == stock
            assert product.reserved == (stock // quantity) * quantity
            assert 0 <= product.reserved <= product.stock

            codes = [code for (code,) in db.session.query(Order.code)]
            assert len(codes) == len(set(codes)) == 3
            db.session.remove()
