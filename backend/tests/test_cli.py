import pytest

from rxledger.models import Location, Product, StockBatch
from rxledger.services import assignment_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


def test_seed_demo_is_idempotent(runner, db_session):
    first = runner.invoke(args=["ledger", "seed-demo", "--code", "demo"])
    second = runner.invoke(args=["ledger", "seed-demo", "--code", "demo"])

    assert first.exit_code == 0, first.output
    assert "PASS Location DEMO" in first.output
    assert "SKIP" in second.output
    assert db_session.query(Location).count() == 1
    assert db_session.query(Product).count() == 2
    assert db_session.query(StockBatch).count() == 3


def test_roll_forward_command(runner, db_session, customer, product, receive):
    receive(product, 10)
    assignment_service.assign_to_party(
        db_session,
        party_id=customer.id,
        product_id=product.id,
        quantity=7,
        unit_price_cents=100,
        period="2024-03",
    )

    result = runner.invoke(args=[
        "ledger", "roll-forward",
        "--customer-id", str(customer.id),
        "--from", "2024-03",
        "--to", "2024-04",
    ])

    assert result.exit_code == 0, result.output
    assert "previous balance 7" in result.output


def test_roll_forward_command_reports_errors(runner, db_session, agent):
    result = runner.invoke(args=[
        "ledger", "roll-forward",
        "--customer-id", str(agent.id),
        "--from", "2024-03",
        "--to", "2024-04",
    ])

    assert result.exit_code == 1
    assert "INVALID_STATE" in result.output
