from __future__ import annotations

import pytest

from perfume_pos.errors import ConflictError, NotFoundError, ValidationError
from perfume_pos.services.debts import list_debt_payments, record_debt_payment
from perfume_pos.services.finance import compute_financial_summary
from perfume_pos.services.sales import FULL_BOTTLE, SaleLineInput, create_sale, get_sale


@pytest.fixture
def credit_sale(conn, make_batch):
    _, gid = make_batch()
    return create_sale(
        conn,
        customer_name="Amina",
        payment_method="cash",
        sale_date="2024-02-01",
        amount_paid=100,
        items=[SaleLineInput(stock_group_id=gid, sale_type=FULL_BOTTLE, quantity=2, unit_price=150)],
    )


def test_payment_moves_debt_to_paid(conn, credit_sale):
    record_debt_payment(
        conn, sale_id=credit_sale.sale_id, amount_paid=120, payment_date="2024-02-05", payment_method="mobile_money"
    )
    sale = get_sale(conn, credit_sale.sale_id)["sale"]
    assert sale["debt_amount"] == 80
    assert sale["amount_paid"] == 220
    assert compute_financial_summary(conn).outstanding_debts == 80

    record_debt_payment(conn, sale_id=credit_sale.sale_id, amount_paid=80, payment_date="2024-02-06", payment_method="cash")
    assert get_sale(conn, credit_sale.sale_id)["sale"]["debt_amount"] == 0
    assert len(list_debt_payments(conn, credit_sale.sale_id)) == 2
    assert list_debt_payments(conn)[0]["customer_name"] == "Amina"


def test_payment_cannot_exceed_debt(conn, credit_sale):
    with pytest.raises(ConflictError):
        record_debt_payment(
            conn, sale_id=credit_sale.sale_id, amount_paid=201, payment_date="2024-02-05", payment_method="cash"
        )
    assert get_sale(conn, credit_sale.sale_id)["sale"]["debt_amount"] == 200
    assert list_debt_payments(conn) == []


def test_payment_validation(conn, credit_sale):
    with pytest.raises(ValidationError):
        record_debt_payment(conn, sale_id=credit_sale.sale_id, amount_paid=0, payment_date="2024-02-05", payment_method="cash")
    with pytest.raises(ValidationError):
        record_debt_payment(conn, sale_id=credit_sale.sale_id, amount_paid=10, payment_date="", payment_method="cash")
    with pytest.raises(NotFoundError):
        record_debt_payment(conn, sale_id=999, amount_paid=10, payment_date="2024-02-05", payment_method="cash")
