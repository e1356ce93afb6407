from __future__ import annotations

from typing import Optional

from perfume_pos.config import DEFAULT_DECANTS_PER_BOTTLE
from perfume_pos.db import q, q1
from perfume_pos.errors import ValidationError
from perfume_pos.services.perfumes import decants_baseline
from perfume_pos.utils import iso_today, money


def sales_stats(
    conn,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    *,
    default_decants: int = DEFAULT_DECANTS_PER_BOTTLE,
    top_n: int = 10,
) -> dict:
    clauses = []
    params: list = []
    if start_date:
        clauses.append("DATE(s.sale_date) >= DATE(?)")
        params.append(str(start_date))
    if end_date:
        clauses.append("DATE(s.sale_date) <= DATE(?)")
        params.append(str(end_date))
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""

    totals = q1(
        conn,
        f"""
        SELECT
          (SELECT COUNT(1) FROM sales s {where}) AS total_sales,
          COALESCE(SUM(CASE WHEN si.sale_type='full_bottle' THEN 1 ELSE 0 END), 0) AS full_bottle_lines,
          COALESCE(SUM(CASE WHEN si.sale_type='decant' THEN 1 ELSE 0 END), 0) AS decant_lines,
          COALESCE(SUM(CASE WHEN si.sale_type='full_bottle' THEN si.quantity ELSE 0 END), 0) AS full_bottles_sold,
          COALESCE(SUM(CASE WHEN si.sale_type='decant' THEN si.quantity ELSE 0 END), 0) AS decants_sold,
          COALESCE(SUM(si.quantity), 0) AS total_units_sold
        FROM sale_items si
        JOIN sales s ON s.id = si.sale_id
        {where}
        """,
        params + params,
    )

    available = q1(
        conn,
        """
        SELECT COALESCE(SUM(g.remaining_quantity), 0) AS n
        FROM stock_groups g
        JOIN perfumes p ON p.id = g.perfume_id
        LEFT JOIN decant_tracking t ON t.stock_group_id = g.id
        WHERE COALESCE(t.decants_sold, 0) = 0 AND p.is_out_of_stock = 0
        """,
    )

    decants_available = 0
    for r in q(
        conn,
        """
        SELECT g.quantity, p.estimated_decants_per_bottle,
               COALESCE(t.bottles_sold, 0) AS bottles_sold,
               COALESCE(t.decants_sold, 0) AS decants_sold
        FROM stock_groups g
        JOIN perfumes p ON p.id = g.perfume_id
        LEFT JOIN decant_tracking t ON t.stock_group_id = g.id
        """,
    ):
        baseline = decants_baseline(r["estimated_decants_per_bottle"], default_decants)
        bottles = int(r["quantity"]) - int(r["bottles_sold"])
        decants_available += max(0, bottles * baseline - int(r["decants_sold"]))

    top = q(
        conn,
        f"""
        SELECT p.id AS perfume_id, p.name AS perfume_name,
               SUM(si.quantity) AS units_sold,
               ROUND(SUM(si.subtotal), 2) AS revenue
        FROM sale_items si
        JOIN sales s ON s.id = si.sale_id
        JOIN perfumes p ON p.id = si.perfume_id
        {where}
        GROUP BY p.id
        ORDER BY revenue DESC, p.name ASC
        LIMIT ?
        """,
        params + [int(top_n)],
    )

    stats = {k: int(totals[k]) for k in totals.keys()}
    stats["full_bottles_available"] = int(available["n"])
    stats["decants_available_estimated"] = int(decants_available)
    stats["top_perfumes"] = [dict(r) for r in top]
    return stats


def _window(value, label: str) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number.")
    if n <= 0:
        raise ValidationError(f"{label} must be > 0.")
    return n


def daily_revenue(conn, days: int = 30, *, today: Optional[str] = None) -> list[dict]:
    """Cash taken and sales value per day over the last ``days`` days."""
    days = _window(days, "Days")
    today = today or iso_today()
    rows = q(
        conn,
        """
        SELECT DATE(sale_date) AS date,
               ROUND(SUM(amount_paid), 2) AS revenue,
               ROUND(SUM(total_amount), 2) AS total_sales
        FROM sales
        WHERE DATE(sale_date) >= DATE(?, ?) AND DATE(sale_date) <= DATE(?)
        GROUP BY DATE(sale_date)
        ORDER BY date ASC
        """,
        (today, f"-{days} days", today),
    )
    return [dict(r) for r in rows]


def monthly_revenue(conn, months: int = 12, *, today: Optional[str] = None) -> list[dict]:
    months = _window(months, "Months")
    today = today or iso_today()
    rows = q(
        conn,
        """
        SELECT strftime('%Y-%m', sale_date) AS month,
               ROUND(SUM(amount_paid), 2) AS revenue,
               ROUND(SUM(total_amount), 2) AS total_sales,
               COUNT(1) AS transaction_count
        FROM sales
        WHERE DATE(sale_date) >= DATE(?, ?) AND DATE(sale_date) <= DATE(?)
        GROUP BY month
        ORDER BY month ASC
        """,
        (today, f"-{months} months", today),
    )
    return [dict(r) for r in rows]


def revenue_vs_expenses(conn, months: int = 12, *, today: Optional[str] = None) -> list[dict]:
    """Monthly cash in against expenses. A month with only one side shows 0 for the other."""
    months = _window(months, "Months")
    today = today or iso_today()
    params = (today, f"-{months} months", today)
    revenue = {
        r["month"]: float(r["total"])
        for r in q(
            conn,
            """
            SELECT strftime('%Y-%m', sale_date) AS month, SUM(amount_paid) AS total
            FROM sales
            WHERE DATE(sale_date) >= DATE(?, ?) AND DATE(sale_date) <= DATE(?)
            GROUP BY month
            """,
            params,
        )
    }
    expenses = {
        r["month"]: float(r["total"])
        for r in q(
            conn,
            """
            SELECT strftime('%Y-%m', expense_date) AS month, SUM(amount) AS total
            FROM expenses
            WHERE DATE(expense_date) >= DATE(?, ?) AND DATE(expense_date) <= DATE(?)
            GROUP BY month
            """,
            params,
        )
    }
    out = []
    for month in sorted(set(revenue) | set(expenses)):
        rev = money(revenue.get(month, 0.0))
        exp = money(expenses.get(month, 0.0))
        out.append({"month": month, "revenue": rev, "expenses": exp, "profit": money(rev - exp)})
    return out
