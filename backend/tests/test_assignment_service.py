from datetime import date

import pytest

from rxledger.errors import ExceedsBalance, InsufficientStock, InvalidState, NotFound, ValidationError
from rxledger.models import (
    AssignmentHistory,
    AssignmentHolding,
    AssignmentLine,
    ConsignmentPeriod,
    SaleTransaction,
    StockBatch,
)
from rxledger.services import assignment_service, catalog_service, history_service, sales_service
from rxledger.services.assignment_service import apportion_return


def _batch_remaining(session, batch):
    session.expire_all()
    return session.get(StockBatch, batch.id).quantity_remaining


def _holdings(session, line_id):
    session.expire_all()
    rows = session.query(AssignmentHolding).filter_by(assignment_line_id=line_id).all()
    return {h.batch_id: h.quantity_outstanding for h in rows}


def assert_conserved(line):
    assert line.current_balance == (
        line.previous_balance + line.quantity_added - line.quantity_sold - line.quantity_returned
    )
    assert line.current_balance >= 0
    assert sum(h.quantity_outstanding for h in line.holdings) == line.current_balance


class TestAgentAssignment:
    def test_assign_allocates_fifo_and_records_holdings(self, db_session, agent, product, receive):
        b1 = receive(product, 5, made=date(2024, 1, 1))
        b2 = receive(product, 10, made=date(2024, 2, 1))

        line = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=8, unit_price_cents=150
        )

        assert line.period_id is None
        assert line.previous_balance == 0
        assert line.quantity_added == 8
        assert line.current_balance == 8
        assert line.total_assigned_value_cents == 1200
        assert _holdings(db_session, line.id) == {b1.id: 5, b2.id: 3}
        assert _batch_remaining(db_session, b1) == 0
        assert _batch_remaining(db_session, b2) == 7
        assert_conserved(db_session.get(AssignmentLine, line.id))

    def test_second_assignment_tops_up_same_line(self, db_session, agent, product, receive):
        receive(product, 20, made=date(2024, 1, 1))

        first = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=5, unit_price_cents=100
        )
        second = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=3, unit_price_cents=100
        )

        assert first.id == second.id
        assert second.quantity_added == 8
        assert second.current_balance == 8

        actions = [h.action_type for h in history_service.list_history(db_session, party_id=agent.id)]
        assert actions == ["ITEMS_ADDED", "ITEMS_ADDED", "CREATED"]

    def test_failed_allocation_leaves_no_line(self, db_session, agent, product, receive):
        receive(product, 3, made=date(2024, 1, 1))

        with pytest.raises(InsufficientStock):
            assignment_service.assign_to_party(
                db_session, party_id=agent.id, product_id=product.id, quantity=4, unit_price_cents=100
            )

        assert db_session.query(AssignmentLine).count() == 0

    def test_agents_reject_period(self, db_session, agent, product, receive):
        receive(product, 3, made=date(2024, 1, 1))
        with pytest.raises(ValidationError):
            assignment_service.assign_to_party(
                db_session,
                party_id=agent.id,
                product_id=product.id,
                quantity=1,
                unit_price_cents=100,
                period="2024-03",
            )

    def test_inactive_party_is_rejected(self, db_session, agent, product, receive):
        receive(product, 3, made=date(2024, 1, 1))
        agent.is_active = False
        db_session.commit()

        with pytest.raises(InvalidState):
            assignment_service.assign_to_party(
                db_session, party_id=agent.id, product_id=product.id, quantity=1, unit_price_cents=100
            )


class TestLineSales:
    def test_sale_beyond_balance_changes_nothing(self, db_session, agent, product, receive):
        batch = receive(product, 10, made=date(2024, 1, 1))
        line = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=3, unit_price_cents=100
        )

        with pytest.raises(ExceedsBalance) as exc_info:
            sales_service.record_party_sale(
                db_session, party_id=agent.id, items=[{"product_id": product.id, "quantity": 4}]
            )

        err = exc_info.value
        assert err.details["action"] == "sell"
        assert err.details["current_balance"] == 3
        assert err.details["requested"] == 4

        db_session.expire_all()
        line = db_session.get(AssignmentLine, line.id)
        assert line.current_balance == 3
        assert line.quantity_sold == 0
        assert _batch_remaining(db_session, batch) == 7
        assert db_session.query(SaleTransaction).count() == 0

    def test_sale_consumes_oldest_holding(self, db_session, agent, product, receive):
        b1 = receive(product, 4, made=date(2024, 1, 1))
        b2 = receive(product, 10, made=date(2024, 2, 1))
        line = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=8, unit_price_cents=100
        )

        sale = sales_service.record_party_sale(
            db_session, party_id=agent.id, items=[{"product_id": product.id, "quantity": 6}]
        )

        assert sorted((i.batch_id, i.quantity) for i in sale.items) == [(b1.id, 4), (b2.id, 2)]
        assert _holdings(db_session, line.id) == {b1.id: 0, b2.id: 2}
        # Party sales never touch the stock pool
        assert _batch_remaining(db_session, b2) == 6


class TestReturns:
    def test_return_is_split_in_proportion(self, db_session, agent, product, receive):
        b1 = receive(product, 6, made=date(2024, 1, 1))
        b2 = receive(product, 10, made=date(2024, 2, 1))
        line = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=10, unit_price_cents=100
        )
        assert _holdings(db_session, line.id) == {b1.id: 6, b2.id: 4}

        line = assignment_service.record_return(
            db_session, party_id=agent.id, product_id=product.id, quantity=5
        )

        assert line.quantity_returned == 5
        assert line.current_balance == 5
        assert _holdings(db_session, line.id) == {b1.id: 3, b2.id: 2}
        assert _batch_remaining(db_session, b1) == 3
        assert _batch_remaining(db_session, b2) == 8
        assert_conserved(db_session.get(AssignmentLine, line.id))

    def test_return_to_named_batch(self, db_session, agent, product, receive):
        b1 = receive(product, 6, made=date(2024, 1, 1))
        b2 = receive(product, 10, made=date(2024, 2, 1))
        line = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=10, unit_price_cents=100
        )

        assignment_service.record_return(
            db_session, party_id=agent.id, product_id=product.id, quantity=4, batch_id=b2.id
        )

        assert _holdings(db_session, line.id) == {b1.id: 6, b2.id: 0}
        assert _batch_remaining(db_session, b2) == 10

    def test_return_beyond_balance_is_rejected(self, db_session, agent, product, receive):
        batch = receive(product, 10, made=date(2024, 1, 1))
        line = assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=3, unit_price_cents=100
        )

        with pytest.raises(ExceedsBalance) as exc_info:
            assignment_service.record_return(
                db_session, party_id=agent.id, product_id=product.id, quantity=4
            )

        assert exc_info.value.details["action"] == "return"
        db_session.expire_all()
        assert db_session.get(AssignmentLine, line.id).current_balance == 3
        assert _batch_remaining(db_session, batch) == 7

    def test_return_to_batch_not_held(self, db_session, agent, product, receive):
        held = receive(product, 10, made=date(2024, 1, 1))
        assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=3, unit_price_cents=100
        )
        other = receive(product, 5, made=date(2024, 3, 1))

        with pytest.raises(NotFound):
            assignment_service.record_return(
                db_session, party_id=agent.id, product_id=product.id, quantity=1, batch_id=other.id
            )
        assert _batch_remaining(db_session, held) == 7

    def test_return_without_line(self, db_session, agent, product):
        with pytest.raises(NotFound):
            assignment_service.record_return(
                db_session, party_id=agent.id, product_id=product.id, quantity=1
            )


class TestItemLists:
    def test_assign_items_in_one_call(self, db_session, agent, product, other_product, receive):
        receive(product, 10, made=date(2024, 1, 1))
        receive(other_product, 10, made=date(2024, 1, 1))

        lines = assignment_service.assign_items(
            db_session,
            party_id=agent.id,
            items=[
                {"product_id": product.id, "quantity": 4, "unit_price_cents": 100},
                {"product_id": other_product.id, "quantity": 2, "unit_price_cents": 250},
            ],
        )

        assert [(line.product_id, line.current_balance) for line in lines] == [
            (product.id, 4),
            (other_product.id, 2),
        ]
        for line in lines:
            assert_conserved(line)

    def test_later_item_failure_rolls_back_earlier_items(self, db_session, agent, product, other_product, receive):
        plenty = receive(product, 10, made=date(2024, 1, 1))
        receive(other_product, 1, made=date(2024, 1, 1))

        with pytest.raises(InsufficientStock):
            assignment_service.assign_items(
                db_session,
                party_id=agent.id,
                items=[
                    {"product_id": product.id, "quantity": 4, "unit_price_cents": 100},
                    {"product_id": other_product.id, "quantity": 2, "unit_price_cents": 100},
                ],
            )

        assert _batch_remaining(db_session, plenty) == 10
        assert db_session.query(AssignmentLine).count() == 0
        assert db_session.query(AssignmentHolding).count() == 0
        assert db_session.query(AssignmentHistory).count() == 0

    def test_customer_failure_leaves_no_period(self, db_session, customer, product, receive):
        plenty = receive(product, 10, made=date(2024, 1, 1))

        with pytest.raises(NotFound):
            assignment_service.assign_items(
                db_session,
                party_id=customer.id,
                items=[
                    {"product_id": product.id, "quantity": 4, "unit_price_cents": 100},
                    {"product_id": 999, "quantity": 1, "unit_price_cents": 100},
                ],
                period="2024-03",
            )

        assert _batch_remaining(db_session, plenty) == 10
        assert db_session.query(ConsignmentPeriod).count() == 0
        assert db_session.query(AssignmentLine).count() == 0

    def test_later_return_failure_rolls_back_earlier_returns(self, db_session, agent, product, other_product, receive):
        batch = receive(product, 10, made=date(2024, 1, 1))
        receive(other_product, 10, made=date(2024, 1, 1))
        first, second = assignment_service.assign_items(
            db_session,
            party_id=agent.id,
            items=[
                {"product_id": product.id, "quantity": 5, "unit_price_cents": 100},
                {"product_id": other_product.id, "quantity": 5, "unit_price_cents": 100},
            ],
        )

        with pytest.raises(ExceedsBalance):
            assignment_service.return_items(
                db_session,
                party_id=agent.id,
                items=[
                    {"product_id": product.id, "quantity": 2},
                    {"product_id": other_product.id, "quantity": 6},
                ],
            )

        db_session.expire_all()
        assert db_session.get(AssignmentLine, first.id).current_balance == 5
        assert db_session.get(AssignmentLine, second.id).quantity_returned == 0
        assert _batch_remaining(db_session, batch) == 5

    def test_return_items_to_named_batch(self, db_session, agent, product, other_product, receive):
        b1 = receive(product, 2, made=date(2024, 1, 1))
        b2 = receive(product, 10, made=date(2024, 2, 1))
        receive(other_product, 10, made=date(2024, 1, 1))
        assignment_service.assign_items(
            db_session,
            party_id=agent.id,
            items=[
                {"product_id": product.id, "quantity": 6, "unit_price_cents": 100},
                {"product_id": other_product.id, "quantity": 3, "unit_price_cents": 100},
            ],
        )

        lines = assignment_service.return_items(
            db_session,
            party_id=agent.id,
            items=[
                {"product_id": product.id, "quantity": 3, "batch_id": b2.id},
                {"product_id": other_product.id, "quantity": 3},
            ],
        )

        assert [line.current_balance for line in lines] == [3, 0]
        assert _holdings(db_session, lines[0].id) == {b1.id: 2, b2.id: 1}
        assert _batch_remaining(db_session, b2) == 9

    @pytest.mark.parametrize("items", [None, [], "abc", [{"quantity": 1, "unit_price_cents": 100}]])
    def test_malformed_items(self, db_session, agent, items):
        with pytest.raises(ValidationError):
            assignment_service.assign_items(db_session, party_id=agent.id, items=items)


class FakeHolding:
    def __init__(self, outstanding):
        self.quantity_outstanding = outstanding


@pytest.mark.parametrize("outstanding,quantity,expected", [
    ([6, 4], 5, [3, 2]),
    ([6, 4], 3, [2, 1]),
    ([6, 4], 10, [6, 4]),
    ([1, 1], 1, [1, 0]),
    ([5], 2, [2]),
])
def test_apportion_return(outstanding, quantity, expected):
    holdings = [FakeHolding(n) for n in outstanding]

    result = dict((id(h), take) for h, take in apportion_return(holdings, quantity))

    assert [result.get(id(h), 0) for h in holdings] == expected
    assert sum(result.values()) == quantity


def test_apportion_return_refuses_more_than_held():
    with pytest.raises(ValueError):
        apportion_return([FakeHolding(2)], 3)


def test_inactive_product_is_rejected(db_session, agent, product, receive):
    receive(product, 3, made=date(2024, 1, 1))
    product.is_active = False
    db_session.commit()

    with pytest.raises(InvalidState):
        assignment_service.assign_to_party(
            db_session, party_id=agent.id, product_id=product.id, quantity=1, unit_price_cents=100
        )


def test_list_party_lines_hides_empty(db_session, agent, product, other_product, receive):
    receive(product, 5, made=date(2024, 1, 1))
    receive(other_product, 5, made=date(2024, 1, 1))
    assignment_service.assign_to_party(
        db_session, party_id=agent.id, product_id=product.id, quantity=2, unit_price_cents=100
    )
    assignment_service.assign_to_party(
        db_session, party_id=agent.id, product_id=other_product.id, quantity=2, unit_price_cents=100
    )
    assignment_service.record_return(db_session, party_id=agent.id, product_id=product.id, quantity=2)

    all_lines = assignment_service.list_party_lines(db_session, party_id=agent.id)
    held = assignment_service.list_party_lines(db_session, party_id=agent.id, include_empty=False)

    assert len(all_lines) == 2
    assert [line.product_id for line in held] == [other_product.id]


def test_unknown_party(db_session, product):
    with pytest.raises(NotFound):
        catalog_service.get_party(db_session, 999)
