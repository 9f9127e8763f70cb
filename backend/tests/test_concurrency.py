"""
Threaded tests against a file-backed SQLite database.

Each worker runs in its own app context (its own session), so the database
is the only thing serializing them.
"""
import os
import tempfile
import threading
import unittest
from datetime import date

from rxledger import create_app
from rxledger.config import LedgerSettings
from rxledger.errors import ExceedsBalance, InsufficientStock, OverPayment
from rxledger.extensions import db
from rxledger.models import AssignmentLine, StockBatch
from rxledger.models.catalog import PARTY_AGENT
from rxledger.services import assignment_service, catalog_service, payment_service, sales_service, stock_service
from rxledger.services.sequence_service import transaction_prefix
from rxledger.time_utils import business_today


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "LEDGER_RETRY_ATTEMPTS": 5,
            "LEDGER_RETRY_BACKOFF": 0.02,
        })
        self.settings = LedgerSettings.from_config(self.app.config)

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            location = catalog_service.create_location(db.session, code="MAIN", name="Main")
            product = catalog_service.create_product(db.session, sku="CONCUR-1", name="Concurrent Product")
            agent = catalog_service.create_party(
                db.session, party_type=PARTY_AGENT, name="Agent", location_id=location.id
            )
            self.location_id = location.id
            self.product_id = product.id
            self.agent_id = agent.id
            self.prefix = transaction_prefix(location, business_today())

            stock_service.receive_stock(
                db.session,
                product_id=self.product_id,
                location_id=self.location_id,
                quantity=20,
                unit_cost_cents=400,
                manufactured_on=date(2024, 1, 1),
                expires_on=date(2099, 1, 1),
                settings=self.settings,
            )
            line = assignment_service.assign_to_party(
                db.session,
                party_id=self.agent_id,
                product_id=self.product_id,
                quantity=10,
                unit_price_cents=1000,
                settings=self.settings,
            )
            self.line_id = line.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run(self, workers):
        threads = [threading.Thread(target=w) for w in workers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

    def _worker(self, func, results, lock):
        def run():
            with self.app.app_context():
                try:
                    value = func()
                    with lock:
                        results.append(value)
                except Exception as exc:
                    with lock:
                        results.append(exc)
                finally:
                    db.session.remove()
        return run

    def test_concurrent_sales_get_unique_numbers(self):
        results = []
        lock = threading.Lock()

        def sell_one():
            sale = sales_service.record_party_sale(
                db.session,
                party_id=self.agent_id,
                items=[{"product_id": self.product_id, "quantity": 1}],
                settings=self.settings,
            )
            return sale.transaction_number

        self._run([self._worker(sell_one, results, lock) for _ in range(10)])

        errors = [r for r in results if isinstance(r, Exception)]
        self.assertFalse(errors)
        self.assertEqual(sorted(results), [f"{self.prefix}-{n:04d}" for n in range(1, 11)])

        with self.app.app_context():
            line = db.session.get(AssignmentLine, self.line_id)
            self.assertEqual(line.current_balance, 0)
            self.assertEqual(line.quantity_sold, 10)

    def test_concurrent_party_sales_cannot_oversell(self):
        results = []
        lock = threading.Lock()

        def sell_six():
            sales_service.record_party_sale(
                db.session,
                party_id=self.agent_id,
                items=[{"product_id": self.product_id, "quantity": 6}],
                settings=self.settings,
            )
            return "sold"

        self._run([self._worker(sell_six, results, lock) for _ in range(2)])

        self.assertEqual(results.count("sold"), 1)
        self.assertEqual(sum(1 for r in results if isinstance(r, ExceedsBalance)), 1)
        with self.app.app_context():
            self.assertEqual(db.session.get(AssignmentLine, self.line_id).current_balance, 4)

    def test_concurrent_stock_sales_never_go_negative(self):
        # 10 units left in the pool after the agent assignment
        results = []
        lock = threading.Lock()

        def sell_three():
            sales_service.record_stock_sale(
                db.session,
                location_id=self.location_id,
                items=[{"product_id": self.product_id, "quantity": 3, "unit_price_cents": 1200}],
                settings=self.settings,
            )
            return "sold"

        self._run([self._worker(sell_three, results, lock) for _ in range(5)])

        self.assertEqual(results.count("sold"), 3)
        self.assertEqual(sum(1 for r in results if isinstance(r, InsufficientStock)), 2)
        with self.app.app_context():
            remaining = sum(b.quantity_remaining for b in db.session.query(StockBatch).all())
            self.assertEqual(remaining, 1)

    def test_concurrent_payments_cannot_overpay(self):
        with self.app.app_context():
            sale = sales_service.record_party_sale(
                db.session,
                party_id=self.agent_id,
                items=[{"product_id": self.product_id, "quantity": 1}],
                settings=self.settings,
            )
            sale_id = sale.id

        results = []
        lock = threading.Lock()

        def pay_600():
            return payment_service.record_payment(
                db.session,
                transaction_id=sale_id,
                amount_cents=600,
                settings=self.settings,
            )["payment_status"]

        self._run([self._worker(pay_600, results, lock) for _ in range(2)])

        self.assertEqual(results.count("PARTIAL"), 1)
        self.assertEqual(sum(1 for r in results if isinstance(r, OverPayment)), 1)
        with self.app.app_context():
            summary = payment_service.payment_summary(db.session, transaction_id=sale_id)
            self.assertEqual(summary["total_paid_cents"], 600)


if __name__ == "__main__":
    unittest.main()
