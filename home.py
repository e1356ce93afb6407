from __future__ import annotations

import streamlit as st

from perfume_pos.services.finance import compute_financial_summary
from perfume_pos.services.stats import sales_stats
from perfume_pos.ui import bootstrap
from perfume_pos.utils import fmt_money

st.set_page_config(page_title="Perfume POS", page_icon="🧴", layout="wide")

st.title("🧴 Perfume POS")
st.caption("Full bottles and decants, cost recovery per batch, and cash/capital position from the ledger.")

settings, conn = bootstrap()

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")

summary = compute_financial_summary(conn)
stats = sales_stats(conn, default_decants=settings.default_decants_per_bottle)

c1, c2, c3, c4 = st.columns(4)
c1.metric("Liquid cash", fmt_money(summary.liquid_cash, settings.currency))
c2.metric("Net profit", fmt_money(summary.net_profit, settings.currency))
c3.metric("Outstanding debts", fmt_money(summary.outstanding_debts, settings.currency))
c4.metric("Today's income", fmt_money(summary.daily_income, settings.currency))

c1, c2, c3 = st.columns(3)
c1.metric("Sales", f"{stats['total_sales']}")
c2.metric("Full bottles available", f"{stats['full_bottles_available']}")
c3.metric("Decants available (est.)", f"{stats['decants_available_estimated']}")

st.info(
    "Use the left sidebar navigation. Start with **🧪 Data Management** to load demo data, then try **Stock In**, **Sales**, and **Reports**.",
    icon="ℹ️",
)
