from __future__ import annotations

from typing import Optional

from perfume_pos.db import q, q1, x
from perfume_pos.errors import NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.utils import clean_text, money

log = get_logger(__name__)


def create_expense(
    conn,
    *,
    description: str,
    amount: float,
    expense_date: str,
    category: Optional[str] = None,
) -> int:
    description = clean_text(description)
    if not description:
        raise ValidationError("Description is required.")
    try:
        amt = money(amount)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number.")
    if amt <= 0:
        raise ValidationError("Amount must be > 0.")
    if not expense_date:
        raise ValidationError("Expense date is required.")

    expense_id = x(
        conn,
        "INSERT INTO expenses (description, amount, category, expense_date) VALUES (?, ?, ?, ?)",
        (description, amt, clean_text(category), str(expense_date)),
    )
    log.info("Recorded expense %s: %.2f (%s)", expense_id, amt, description)
    return expense_id


def list_expenses(conn, *, start_date: Optional[str] = None, end_date: Optional[str] = None):
    clauses = []
    params: list = []
    if start_date:
        clauses.append("DATE(expense_date) >= DATE(?)")
        params.append(str(start_date))
    if end_date:
        clauses.append("DATE(expense_date) <= DATE(?)")
        params.append(str(end_date))
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    return q(conn, f"SELECT * FROM expenses {where} ORDER BY expense_date DESC, id DESC", params)


def delete_expense(conn, expense_id: int) -> None:
    if q1(conn, "SELECT id FROM expenses WHERE id=?", (int(expense_id),)) is None:
        raise NotFoundError("Expense not found.")
    x(conn, "DELETE FROM expenses WHERE id=?", (int(expense_id),))
    log.info("Deleted expense %s", expense_id)
