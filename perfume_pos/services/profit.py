"""Cost-recovery profit accounting.

Sale lines are replayed oldest first. Each batch's purchase cost
(``subtotal_cost``) is paid back out of the revenue of its own sales before
any of that revenue counts as profit. Recovery restarts at the window start
when a date range is given, so a filtered report is not a slice of the
unfiltered one.

Both the profit breakdown and the financial summary go through
:func:`replay_cost_recovery`.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from perfume_pos.config import DEFAULT_CURRENCY
from perfume_pos.db import q
from perfume_pos.utils import fmt_money, money


@dataclass
class RecoveredLine:
    sale_item_id: int
    sale_id: int
    sale_date: str
    customer_name: Optional[str]
    perfume_id: int
    perfume_name: str
    stock_group_id: int
    sale_type: str
    quantity: int
    unit_price: float
    revenue: float
    stock_cost: float
    cost_recovery: float
    profit: float
    cost_left: float


@dataclass
class SaleProfit:
    sale_id: int
    sale_date: str
    customer_name: Optional[str]
    total_amount: float = 0.0
    total_cost: float = 0.0
    total_profit: float = 0.0
    items: list[dict] = field(default_factory=list)


@dataclass
class PerfumeProfit:
    perfume_id: int
    perfume_name: str
    full_bottle_quantity: int = 0
    decant_quantity: int = 0
    sales_value: float = 0.0
    cost: float = 0.0
    profit: float = 0.0


@dataclass
class ProfitBreakdown:
    total_sales_value: float
    total_cost: float
    total_profit: float
    by_perfume: list[PerfumeProfit]
    by_sale: list[SaleProfit]


def load_sale_lines(conn, start_date: Optional[str] = None, end_date: Optional[str] = None):
    clauses = []
    params: list = []
    if start_date:
        clauses.append("DATE(s.sale_date) >= DATE(?)")
        params.append(str(start_date))
    if end_date:
        clauses.append("DATE(s.sale_date) <= DATE(?)")
        params.append(str(end_date))
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
    return q(
        conn,
        f"""
        SELECT si.id AS sale_item_id, si.sale_id, si.perfume_id, si.stock_group_id,
               si.sale_type, si.quantity, si.unit_price, si.subtotal,
               s.sale_date, s.customer_name,
               p.name AS perfume_name,
               g.subtotal_cost
        FROM sale_items si
        JOIN sales s ON s.id = si.sale_id
        JOIN perfumes p ON p.id = si.perfume_id
        JOIN stock_groups g ON g.id = si.stock_group_id
        {where}
        ORDER BY s.sale_date ASC, s.id ASC, si.id ASC
        """,
        params,
    )


def replay_cost_recovery(rows: Iterable) -> Iterator[RecoveredLine]:
    """Split each line's revenue into cost recovery and profit.

    ``rows`` must already be in chronological order.
    """
    recovered_by_batch: dict[int, float] = {}
    for r in rows:
        group_id = int(r["stock_group_id"])
        revenue = float(r["subtotal"])
        stock_cost = float(r["subtotal_cost"])

        recovered = recovered_by_batch.get(group_id, 0.0)
        left = max(0.0, stock_cost - recovered)
        recovery = min(revenue, left)
        profit = revenue - recovery
        recovered_by_batch[group_id] = recovered + recovery

        yield RecoveredLine(
            sale_item_id=int(r["sale_item_id"]),
            sale_id=int(r["sale_id"]),
            sale_date=str(r["sale_date"]),
            customer_name=r["customer_name"],
            perfume_id=int(r["perfume_id"]),
            perfume_name=str(r["perfume_name"]),
            stock_group_id=group_id,
            sale_type=str(r["sale_type"]),
            quantity=int(r["quantity"]),
            unit_price=float(r["unit_price"]),
            revenue=revenue,
            stock_cost=stock_cost,
            cost_recovery=recovery,
            profit=profit,
            cost_left=left - recovery,
        )


def calculation_note(line: RecoveredLine, currency: str = DEFAULT_CURRENCY) -> str:
    if line.cost_recovery > 0 and line.profit > 0:
        return (
            f"Cost recovery: {fmt_money(line.cost_recovery, currency)}; "
            f"Profit: {fmt_money(line.profit, currency)} (bottle cost fully recovered on this sale)"
        )
    if line.cost_recovery > 0 or line.cost_left > 0:
        if line.cost_left > 0:
            return (
                f"Cost recovery: {fmt_money(line.cost_recovery, currency)} "
                f"({fmt_money(line.cost_left, currency)} left to recover)"
            )
        return f"Cost recovery: {fmt_money(line.cost_recovery, currency)} (bottle cost now fully recovered)"
    return f"Profit: {fmt_money(line.profit, currency)} (bottle cost already recovered)"


def compute_profit_breakdown(
    conn,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    *,
    currency: str = DEFAULT_CURRENCY,
) -> ProfitBreakdown:
    by_sale: dict[int, SaleProfit] = {}
    by_perfume: dict[int, PerfumeProfit] = {}
    total_sales = total_cost = total_profit = 0.0

    for line in replay_cost_recovery(load_sale_lines(conn, start_date, end_date)):
        total_sales += line.revenue
        total_cost += line.cost_recovery
        total_profit += line.profit

        sale = by_sale.setdefault(
            line.sale_id, SaleProfit(sale_id=line.sale_id, sale_date=line.sale_date, customer_name=line.customer_name)
        )
        sale.total_amount += line.revenue
        sale.total_cost += line.cost_recovery
        sale.total_profit += line.profit
        sale.items.append(
            {
                "sale_item_id": line.sale_item_id,
                "perfume_name": line.perfume_name,
                "stock_group_id": line.stock_group_id,
                "sale_type": line.sale_type,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "revenue": money(line.revenue),
                "cost_recovery": money(line.cost_recovery),
                "profit": money(line.profit),
                "calculation_note": calculation_note(line, currency),
            }
        )

        perfume = by_perfume.setdefault(
            line.perfume_id, PerfumeProfit(perfume_id=line.perfume_id, perfume_name=line.perfume_name)
        )
        if line.sale_type == "full_bottle":
            perfume.full_bottle_quantity += line.quantity
        else:
            perfume.decant_quantity += line.quantity
        perfume.sales_value += line.revenue
        perfume.cost += line.cost_recovery
        perfume.profit += line.profit

    for s in by_sale.values():
        s.total_amount, s.total_cost, s.total_profit = money(s.total_amount), money(s.total_cost), money(s.total_profit)
    for p in by_perfume.values():
        p.sales_value, p.cost, p.profit = money(p.sales_value), money(p.cost), money(p.profit)

    return ProfitBreakdown(
        total_sales_value=money(total_sales),
        total_cost=money(total_cost),
        total_profit=money(total_profit),
        by_perfume=sorted(by_perfume.values(), key=lambda p: p.profit, reverse=True),
        by_sale=list(by_sale.values()),
    )


def sales_profit_totals(conn, start_date: Optional[str] = None, end_date: Optional[str] = None) -> tuple[float, float]:
    """(profit_from_sales, cost_of_goods_sold) over the same replay."""
    profit = cost = 0.0
    for line in replay_cost_recovery(load_sale_lines(conn, start_date, end_date)):
        profit += line.profit
        cost += line.cost_recovery
    return money(profit), money(cost)
