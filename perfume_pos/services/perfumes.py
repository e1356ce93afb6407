from __future__ import annotations

import sqlite3
from typing import Optional

from perfume_pos.config import DEFAULT_DECANTS_PER_BOTTLE
from perfume_pos.db import q, q1, x, transaction
from perfume_pos.errors import ConflictError, NotFoundError, ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.utils import clean_text

log = get_logger(__name__)


def _positive_int_or_none(v, label: str) -> Optional[int]:
    if v is None or v == "":
        return None
    try:
        n = int(v)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a whole number.")
    if n <= 0:
        raise ValidationError(f"{label} must be > 0.")
    return n


def decants_baseline(value, default: int = DEFAULT_DECANTS_PER_BOTTLE) -> int:
    """Decants expected per bottle; falls back to the default when unset."""
    try:
        n = int(value) if value is not None else 0
    except (TypeError, ValueError):
        n = 0
    return n if n > 0 else int(default)


def get_perfume(conn, perfume_id: int):
    row = q1(conn, "SELECT * FROM perfumes WHERE id=?", (int(perfume_id),))
    if row is None:
        raise NotFoundError("Perfume not found.")
    return row


def list_perfumes(conn, *, search: Optional[str] = None):
    if search:
        return q(conn, "SELECT * FROM perfumes WHERE name LIKE ? ORDER BY name", (f"%{search.strip()}%",))
    return q(conn, "SELECT * FROM perfumes ORDER BY name")


def create_perfume(
    conn,
    *,
    name: str,
    volume_ml: Optional[int] = None,
    estimated_decants_per_bottle: Optional[int] = None,
) -> int:
    name = clean_text(name)
    if not name:
        raise ValidationError("Perfume name is required.")

    try:
        perfume_id = x(
            conn,
            """
            INSERT INTO perfumes (name, volume_ml, estimated_decants_per_bottle)
            VALUES (?, ?, ?)
            """,
            (
                name,
                _positive_int_or_none(volume_ml, "Volume (ml)"),
                _positive_int_or_none(estimated_decants_per_bottle, "Estimated decants per bottle"),
            ),
        )
    except sqlite3.IntegrityError:
        raise ConflictError("Perfume with this name already exists", payload={"name": name})

    log.info("Created perfume %s (%s)", perfume_id, name)
    return perfume_id


def update_perfume(
    conn,
    perfume_id: int,
    *,
    name: Optional[str] = None,
    volume_ml: Optional[int] = None,
    estimated_decants_per_bottle: Optional[int] = None,
    is_out_of_stock: Optional[bool] = None,
) -> None:
    """Partial update: arguments left as None keep the stored value."""
    get_perfume(conn, perfume_id)

    if name is not None and not clean_text(name):
        raise ValidationError("Perfume name cannot be empty.")

    try:
        x(
            conn,
            """
            UPDATE perfumes SET
              name = COALESCE(?, name),
              volume_ml = COALESCE(?, volume_ml),
              estimated_decants_per_bottle = COALESCE(?, estimated_decants_per_bottle),
              is_out_of_stock = COALESCE(?, is_out_of_stock)
            WHERE id=?
            """,
            (
                clean_text(name),
                _positive_int_or_none(volume_ml, "Volume (ml)"),
                _positive_int_or_none(estimated_decants_per_bottle, "Estimated decants per bottle"),
                None if is_out_of_stock is None else int(bool(is_out_of_stock)),
                int(perfume_id),
            ),
        )
    except sqlite3.IntegrityError:
        raise ConflictError("Perfume with this name already exists", payload={"name": name})


def delete_perfume(conn, perfume_id: int) -> None:
    get_perfume(conn, perfume_id)
    with transaction(conn):
        used = q1(conn, "SELECT COUNT(1) AS n FROM stock_groups WHERE perfume_id=?", (int(perfume_id),))
        if int(used["n"]) > 0:
            raise ConflictError("Cannot delete a perfume that has stock records.")
        x(conn, "DELETE FROM perfumes WHERE id=?", (int(perfume_id),))
    log.info("Deleted perfume %s", perfume_id)
