from datetime import date

import pytest

from rxledger.errors import ExceedsBalance, InvalidState, NotFound, ValidationError
from rxledger.models import AssignmentHolding, AssignmentLine, ConsignmentPeriod
from rxledger.periods import Period
from rxledger.services import assignment_service, consignment_service, history_service, payment_service, sales_service
from rxledger.time_utils import business_today


@pytest.fixture
def stocked(product, receive):
    return receive(product, 50, made=date(2024, 1, 1), cost=60)


def _assign(session, customer, product, quantity, period="2024-03", price=100):
    return assignment_service.assign_to_party(
        session,
        party_id=customer.id,
        product_id=product.id,
        quantity=quantity,
        unit_price_cents=price,
        period=period,
    )


def _sell(session, customer, product, quantity, period="2024-03", **kwargs):
    return sales_service.record_party_sale(
        session,
        party_id=customer.id,
        items=[{"product_id": product.id, "quantity": quantity}],
        period=period,
        **kwargs,
    )


class TestPeriods:
    def test_first_assignment_opens_period(self, db_session, customer, product, stocked):
        line = _assign(db_session, customer, product, 20)

        row = consignment_service.get_period(db_session, party_id=customer.id, period="2024-03")
        assert line.period_id == row.id
        assert row.status == "ACTIVE"
        assert row.consignment_number == f"CON-MAIN-202403-{customer.id:04d}"
        assert row.added_qty == 20
        assert row.current_balance_qty == 20
        assert row.total_consigned_value_cents == 2000

    def test_default_period_is_current_month(self, db_session, customer, product, stocked):
        line = _assign(db_session, customer, product, 1, period=None)

        row = db_session.get(ConsignmentPeriod, line.period_id)
        assert row.period == Period.containing(business_today())

    def test_open_period_is_idempotent(self, db_session, customer):
        first = consignment_service.open_period(db_session, party_id=customer.id, period="2024-05")
        second = consignment_service.open_period(db_session, party_id=customer.id, period={"month": 5, "year": 2024})

        assert first.id == second.id
        assert db_session.query(ConsignmentPeriod).count() == 1

    def test_agents_have_no_periods(self, db_session, agent):
        with pytest.raises(InvalidState):
            consignment_service.open_period(db_session, party_id=agent.id, period="2024-05")

    def test_period_aggregates_follow_sales_and_payments(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 20)
        sale = _sell(db_session, customer, product, 8)

        assert sale.transaction_type == "CONSIGNMENT"
        assert sale.payment_status == "UNPAID"
        assert sale.total_amount_cents == 800

        row = consignment_service.get_period(db_session, party_id=customer.id, period="2024-03")
        assert row.sold_qty == 8
        assert row.current_balance_qty == 12
        assert row.total_sold_value_cents == 800
        assert row.total_paid_cents == 0
        assert row.balance_due_cents == 800

        payment_service.record_payment(db_session, transaction_id=sale.id, amount_cents=300)

        db_session.expire_all()
        row = consignment_service.get_period(db_session, party_id=customer.id, period="2024-03")
        assert row.total_paid_cents == 300
        assert row.balance_due_cents == 500

    def test_sale_without_period_uses_latest_active(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 5, period="2024-02")
        _assign(db_session, customer, product, 5, period="2024-03")

        sale = _sell(db_session, customer, product, 2, period=None)

        row = db_session.get(ConsignmentPeriod, sale.period_id)
        assert str(row.period) == "2024-03"

    def test_sale_without_any_period(self, db_session, customer, product):
        with pytest.raises(NotFound):
            _sell(db_session, customer, product, 1, period=None)

    def test_period_summary(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 10)
        sale = _sell(db_session, customer, product, 3)

        summary = consignment_service.period_summary(db_session, party_id=customer.id, period="2024-03")

        assert summary["month"] == 3
        assert summary["year"] == 2024
        assert [line["current_balance"] for line in summary["lines"]] == [7]
        assert [t["transaction_number"] for t in summary["transactions"]] == [sale.transaction_number]


class TestClose:
    def test_closed_period_rejects_mutations(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 10)
        consignment_service.close_period(db_session, party_id=customer.id, period="2024-03")

        with pytest.raises(InvalidState):
            _assign(db_session, customer, product, 1)
        with pytest.raises(InvalidState):
            _sell(db_session, customer, product, 1)
        with pytest.raises(InvalidState):
            assignment_service.record_return(
                db_session, party_id=customer.id, product_id=product.id, quantity=1, period="2024-03"
            )
        with pytest.raises(InvalidState):
            consignment_service.close_period(db_session, party_id=customer.id, period="2024-03")

    def test_payments_still_accepted_after_close(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 10)
        sale = _sell(db_session, customer, product, 4)
        consignment_service.close_period(db_session, party_id=customer.id, period="2024-03")

        result = payment_service.record_payment(db_session, transaction_id=sale.id, amount_cents=400)

        assert result["payment_status"] == "PAID"


class TestRollForward:
    def test_roll_carries_balance(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 20)
        _sell(db_session, customer, product, 8)

        target = consignment_service.roll_period_forward(
            db_session, party_id=customer.id, from_period="2024-03", to_period="2024-04"
        )

        assert str(target.period) == "2024-04"
        lines = assignment_service.list_party_lines(db_session, party_id=customer.id, period="2024-04")
        assert len(lines) == 1
        line = lines[0]
        assert line.previous_balance == 12
        assert line.quantity_added == 0
        assert line.quantity_sold == 0
        assert line.current_balance == 12
        assert line.unit_price_cents == 100

        held = db_session.query(AssignmentHolding).filter_by(assignment_line_id=line.id).all()
        assert sum(h.quantity_outstanding for h in held) == 12

        source = consignment_service.get_period(db_session, party_id=customer.id, period="2024-03")
        assert source.status == "CLOSED"
        assert target.rolled_from_period_id == source.id
        assert target.previous_balance_qty == 12
        assert target.current_balance_qty == 12

    def test_second_roll_fails(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 5)
        consignment_service.roll_period_forward(
            db_session, party_id=customer.id, from_period="2024-03", to_period="2024-04"
        )

        with pytest.raises(InvalidState):
            consignment_service.roll_period_forward(
                db_session, party_id=customer.id, from_period="2024-03", to_period="2024-04"
            )

        line = assignment_service.get_assignment_line(
            db_session, party_id=customer.id, product_id=product.id, period="2024-04"
        )
        assert line.previous_balance == 5

    def test_roll_may_skip_months(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 5)

        target = consignment_service.roll_period_forward(
            db_session, party_id=customer.id, from_period="2024-03", to_period="2024-06"
        )

        assert (target.year, target.month) == (2024, 6)
        assert consignment_service.find_period(db_session, customer.id, Period.of(4, 2024)) is None

    def test_roll_backwards_is_rejected(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 5)
        with pytest.raises(ValidationError):
            consignment_service.roll_period_forward(
                db_session, party_id=customer.id, from_period="2024-03", to_period="2024-03"
            )

    def test_sold_out_lines_are_not_carried(self, db_session, customer, product, other_product, stocked, receive):
        receive(other_product, 10, made=date(2024, 1, 1))
        _assign(db_session, customer, product, 5)
        _assign(db_session, customer, other_product, 2)
        _sell(db_session, customer, other_product, 2)

        consignment_service.roll_period_forward(
            db_session, party_id=customer.id, from_period="2024-03", to_period="2024-04"
        )

        lines = assignment_service.list_party_lines(db_session, party_id=customer.id, period="2024-04")
        assert [line.product_id for line in lines] == [product.id]

    def test_returns_after_roll_credit_original_batch(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 6)
        consignment_service.roll_period_forward(
            db_session, party_id=customer.id, from_period="2024-03", to_period="2024-04"
        )

        assignment_service.record_return(
            db_session, party_id=customer.id, product_id=product.id, quantity=2, period="2024-04"
        )
        db_session.expire_all()
        assert stocked.quantity_remaining == 46

        with pytest.raises(ExceedsBalance):
            _sell(db_session, customer, product, 5, period="2024-04")

    def test_roll_writes_history(self, db_session, customer, product, stocked):
        _assign(db_session, customer, product, 5)
        target = consignment_service.roll_period_forward(
            db_session, party_id=customer.id, from_period="2024-03", to_period="2024-04"
        )

        rolled = history_service.list_history(
            db_session, party_id=customer.id, period_id=target.id, action_type="ROLLED_FORWARD"
        )
        assert [(h.quantity, h.note) for h in rolled] == [(5, "Carried from 2024-03")]


def test_line_conservation_holds_everywhere(db_session, customer, product, stocked):
    _assign(db_session, customer, product, 20)
    _sell(db_session, customer, product, 5)
    assignment_service.record_return(
        db_session, party_id=customer.id, product_id=product.id, quantity=3, period="2024-03"
    )
    consignment_service.roll_period_forward(
        db_session, party_id=customer.id, from_period="2024-03", to_period="2024-04"
    )
    _assign(db_session, customer, product, 4, period="2024-04")

    for line in db_session.query(AssignmentLine).all():
        assert line.current_balance == (
            line.previous_balance + line.quantity_added - line.quantity_sold - line.quantity_returned
        )
        assert sum(h.quantity_outstanding for h in line.holdings) == line.current_balance
