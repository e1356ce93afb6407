from __future__ import annotations

import sqlite3
from pathlib import Path

import pandas as pd
import streamlit as st

from perfume_pos.config import Settings, load_settings, persist_data_dir
from perfume_pos.db import connect, ensure_schema
from perfume_pos.logging_utils import set_level
from perfume_pos.services.demo_data import upsert_reference_data

SESSION_DATA_DIR = "perfume_pos_data_dir"


@st.cache_resource
def get_settings() -> Settings:
    settings = load_settings(st.session_state.get(SESSION_DATA_DIR))
    set_level(settings.log_level)
    return settings


@st.cache_resource
def get_conn(db_path: Path) -> sqlite3.Connection:
    conn = connect(db_path)
    ensure_schema(conn)
    upsert_reference_data(conn)
    return conn


def bootstrap() -> tuple[Settings, sqlite3.Connection]:
    settings = get_settings()
    return settings, get_conn(settings.db_path)


def use_data_dir(data_dir_str: str) -> None:
    data_dir = persist_data_dir(data_dir_str)
    # Update session for immediate effect
    st.session_state[SESSION_DATA_DIR] = str(data_dir)
    st.cache_resource.clear()


def show_rows(rows, empty_msg: str = "Nothing to show yet.") -> None:
    if rows:
        st.dataframe(pd.DataFrame([dict(r) for r in rows]), use_container_width=True, hide_index=True)
    else:
        st.caption(empty_msg)
