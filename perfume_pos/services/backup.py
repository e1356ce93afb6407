from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from perfume_pos.db import q, table_columns, transaction
from perfume_pos.errors import ValidationError
from perfume_pos.logging_utils import get_logger
from perfume_pos.schema import TABLE_ORDER
from perfume_pos.services.capital import CAPITAL_DESCRIPTION_PREFIX, ORIGIN_MANUAL, ORIGIN_SHIPMENT
from perfume_pos.utils import iso_now

log = get_logger(__name__)

EXPORT_VERSION = 1


@dataclass
class ImportResult:
    inserted: dict[str, int] = field(default_factory=dict)
    skipped: dict[str, int] = field(default_factory=dict)
    failed: dict[str, int] = field(default_factory=dict)

    @property
    def total_inserted(self) -> int:
        return sum(self.inserted.values())

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())

    @property
    def total_failed(self) -> int:
        return sum(self.failed.values())


def export_database(conn) -> dict[str, Any]:
    tables = {t: [dict(r) for r in q(conn, f"SELECT * FROM {t} ORDER BY id")] for t in TABLE_ORDER}
    return {"version": EXPORT_VERSION, "exported_at": iso_now(), "tables": tables}


def export_json(conn) -> str:
    return json.dumps(export_database(conn), indent=2, ensure_ascii=False)


def _validate_payload(payload: Any) -> dict[str, list]:
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            raise ValidationError("Backup file is not valid JSON.")
    if not isinstance(payload, dict) or not isinstance(payload.get("tables"), dict):
        raise ValidationError("Invalid backup format: missing 'tables'.")
    try:
        version = int(payload.get("version", 0))
    except (TypeError, ValueError):
        version = 0
    if version < 1 or version > EXPORT_VERSION:
        raise ValidationError(f"Unsupported backup version: {payload.get('version')!r}.")
    for name, rows in payload["tables"].items():
        if not isinstance(rows, list):
            raise ValidationError(f"Invalid backup format: table '{name}' is not a list.")
    return payload["tables"]


def _insert_row(conn, table: str, columns: list[str], row: dict) -> None:
    cols = [c for c in columns if c in row]
    placeholders = ", ".join("?" for _ in cols)
    conn.execute(
        f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({placeholders})",
        tuple(row[c] for c in cols),
    )


def _legacy_origin(row: dict) -> str:
    # Older backups carry no origin column; classify as schema v2 does.
    description = str(row.get("description") or "")
    if row.get("source_shipment_id") is not None or description.startswith(CAPITAL_DESCRIPTION_PREFIX):
        return ORIGIN_SHIPMENT
    return ORIGIN_MANUAL


def import_database(conn, payload: Any) -> ImportResult:
    """Replace every business table with the backup's rows, ids preserved.

    Rows hitting a unique constraint are skipped. Any other bad row is
    logged and counted, and the load carries on.
    """
    tables = _validate_payload(payload)
    result = ImportResult()

    conn.execute("PRAGMA foreign_keys = OFF;")
    try:
        with transaction(conn):
            for table in reversed(TABLE_ORDER):
                conn.execute(f"DELETE FROM {table};")

            for table in TABLE_ORDER:
                columns = table_columns(conn, table)
                inserted = skipped = failed = 0
                for row in tables.get(table, []):
                    if not isinstance(row, dict):
                        failed += 1
                        log.warning("Import %s: ignoring non-object row %r", table, row)
                        continue
                    if table == "investments" and row.get("origin") is None:
                        row = {**row, "origin": _legacy_origin(row)}
                    try:
                        _insert_row(conn, table, columns, row)
                        inserted += 1
                    except sqlite3.IntegrityError as e:
                        if "UNIQUE" in str(e).upper():
                            skipped += 1
                        else:
                            failed += 1
                            log.warning("Import %s id=%s failed: %s", table, row.get("id"), e)
                    except sqlite3.Error as e:
                        failed += 1
                        log.warning("Import %s id=%s failed: %s", table, row.get("id"), e)
                result.inserted[table] = inserted
                result.skipped[table] = skipped
                result.failed[table] = failed
    finally:
        conn.execute("PRAGMA foreign_keys = ON;")

    log.info(
        "Import finished: %s inserted, %s skipped, %s failed",
        result.total_inserted, result.total_skipped, result.total_failed,
    )
    return result
