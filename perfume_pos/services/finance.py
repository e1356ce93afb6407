from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.services.capital import ORIGIN_MANUAL
from perfume_pos.services.profit import sales_profit_totals
from perfume_pos.utils import clean_text, iso_today, money, month_prefix

log = get_logger(__name__)

LIQUID_CASH = "liquid_cash"
CAPITAL = "capital"
ADJUSTMENT_TYPES = {LIQUID_CASH, CAPITAL}


@dataclass
class FinancialSummary:
    total_revenue: float          # liquid cash
    total_sales_amount: float
    total_expenses: float
    total_capital: float
    total_investment: float
    amount_invested_in_stock: float
    profit_from_sales: float
    cost_of_goods_sold: float
    gross_profit: float
    net_profit: float
    outstanding_debts: float
    daily_income: float
    monthly_income: float
    net_position: float

    @property
    def liquid_cash(self) -> float:
        return self.total_revenue


def _scalar(conn, sql: str, params=()) -> float:
    row = q1(conn, sql, params)
    return money(row[0]) if row is not None else 0.0


def _sales_where(start_date: Optional[str], end_date: Optional[str]) -> tuple[str, list]:
    clauses = []
    params: list = []
    if start_date:
        clauses.append("DATE(sale_date) >= DATE(?)")
        params.append(str(start_date))
    if end_date:
        clauses.append("DATE(sale_date) <= DATE(?)")
        params.append(str(end_date))
    return (("WHERE " + " AND ".join(clauses)) if clauses else ""), params


def adjustment_total(conn, adjustment_type: str) -> float:
    return _scalar(conn, "SELECT COALESCE(SUM(adjustment), 0) FROM cash_adjustments WHERE type=?", (adjustment_type,))


def total_expenses(conn) -> float:
    return _scalar(conn, "SELECT COALESCE(SUM(amount), 0) FROM expenses")


def liquid_cash(conn, start_date: Optional[str] = None, end_date: Optional[str] = None) -> float:
    where, params = _sales_where(start_date, end_date)
    received = _scalar(conn, f"SELECT COALESCE(SUM(amount_paid), 0) FROM sales {where}", params)
    return money(received - total_expenses(conn) + adjustment_total(conn, LIQUID_CASH))


def total_capital(conn) -> float:
    manual = _scalar(conn, "SELECT COALESCE(SUM(amount), 0) FROM investments WHERE origin=?", (ORIGIN_MANUAL,))
    return money(manual + adjustment_total(conn, CAPITAL))


def amount_invested_in_stock(conn) -> float:
    return money(
        _scalar(conn, "SELECT COALESCE(SUM(subtotal_cost), 0) FROM stock_groups")
        + _scalar(conn, "SELECT COALESCE(SUM(quantity_added * unit_cost), 0) FROM custom_inventory_stock_entries")
        + _scalar(conn, "SELECT COALESCE(SUM(total_additional_expenses), 0) FROM stock_shipments")
    )


def compute_financial_summary(
    conn,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    *,
    today: Optional[str] = None,
) -> FinancialSummary:
    """Cash, capital and profit figures rebuilt from the ledger tables.

    The date range narrows sale-derived figures only. Expenses, investments,
    adjustments and stock figures are always all-time.
    """
    today = today or iso_today()
    where, params = _sales_where(start_date, end_date)

    expenses = total_expenses(conn)
    sales_amount = _scalar(conn, f"SELECT COALESCE(SUM(total_amount), 0) FROM sales {where}", params)
    profit, cogs = sales_profit_totals(conn, start_date, end_date)
    stock = amount_invested_in_stock(conn)
    net = money(profit - expenses)

    return FinancialSummary(
        total_revenue=liquid_cash(conn, start_date, end_date),
        total_sales_amount=sales_amount,
        total_expenses=expenses,
        total_capital=total_capital(conn),
        total_investment=stock,
        amount_invested_in_stock=stock,
        profit_from_sales=profit,
        cost_of_goods_sold=cogs,
        gross_profit=profit,
        net_profit=net,
        outstanding_debts=_scalar(conn, "SELECT COALESCE(SUM(debt_amount), 0) FROM sales WHERE debt_amount > 0"),
        daily_income=_scalar(
            conn, "SELECT COALESCE(SUM(amount_paid), 0) FROM sales WHERE DATE(sale_date) = DATE(?)", (today,)
        ),
        monthly_income=_scalar(
            conn,
            "SELECT COALESCE(SUM(amount_paid), 0) FROM sales WHERE substr(sale_date, 1, 7) = ?",
            (month_prefix(today),),
        ),
        net_position=net,
    )


def current_amount(conn, adjustment_type: str) -> float:
    if adjustment_type == LIQUID_CASH:
        return liquid_cash(conn)
    if adjustment_type == CAPITAL:
        return total_capital(conn)
    raise ValidationError("Adjustment type must be 'liquid_cash' or 'capital'.")


def record_cash_adjustment(
    conn,
    adjustment_type: str,
    new_amount: float,
    reason: Optional[str] = None,
) -> dict:
    """Reset liquid cash or capital to a counted amount.

    Stores the difference from the computed figure; later summaries add it.
    """
    adjustment_type = str(adjustment_type or "").strip().lower()
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValidationError("Adjustment type must be 'liquid_cash' or 'capital'.")
    try:
        target = money(new_amount)
    except (TypeError, ValueError):
        raise ValidationError("New amount must be a number.")
    if target < 0:
        raise ValidationError("New amount cannot be negative.")

    with transaction(conn):
        previous = current_amount(conn, adjustment_type)
        delta = money(target - previous)
        adj_id = x(
            conn,
            """
            INSERT INTO cash_adjustments (type, previous_amount, new_amount, adjustment, reason)
            VALUES (?, ?, ?, ?, ?)
            """,
            (adjustment_type, previous, target, delta, clean_text(reason)),
        )
        row = q1(conn, "SELECT * FROM cash_adjustments WHERE id=?", (adj_id,))

    log.info("%s adjusted from %.2f to %.2f (%+.2f)", adjustment_type, previous, target, delta)
    return dict(row)


def list_cash_adjustments(conn, adjustment_type: Optional[str] = None):
    if adjustment_type:
        return q(
            conn,
            "SELECT * FROM cash_adjustments WHERE type=? ORDER BY adjusted_at DESC, id DESC",
            (adjustment_type,),
        )
    return q(conn, "SELECT * FROM cash_adjustments ORDER BY adjusted_at DESC, id DESC")
