from __future__ import annotations

import pytest

from perfume_pos.errors import ConflictError, NotFoundError, ValidationError
from perfume_pos.services.expenses import create_expense, delete_expense, list_expenses
from perfume_pos.services.perfumes import create_perfume, delete_perfume, get_perfume, list_perfumes, update_perfume


def test_create_and_update_perfume(conn):
    pid = create_perfume(conn, name="  Bleu Nuit ", volume_ml=100)
    update_perfume(conn, pid, estimated_decants_per_bottle=12, is_out_of_stock=True)
    p = get_perfume(conn, pid)
    assert p["name"] == "Bleu Nuit"
    assert p["volume_ml"] == 100
    assert p["estimated_decants_per_bottle"] == 12
    assert p["is_out_of_stock"] == 1
    assert [r["name"] for r in list_perfumes(conn, search="bleu")] == ["Bleu Nuit"]


def test_duplicate_perfume_name_rejected(conn):
    create_perfume(conn, name="Amber")
    with pytest.raises(ConflictError, match="already exists"):
        create_perfume(conn, name="Amber")


def test_perfume_validation(conn):
    with pytest.raises(ValidationError):
        create_perfume(conn, name=" ")
    with pytest.raises(ValidationError):
        create_perfume(conn, name="X", estimated_decants_per_bottle=0)
    with pytest.raises(NotFoundError):
        update_perfume(conn, 999, name="Y")


def test_perfume_with_stock_cannot_be_deleted(conn, perfume_id, make_batch):
    make_batch()
    with pytest.raises(ConflictError):
        delete_perfume(conn, perfume_id)
    other = create_perfume(conn, name="Unused")
    delete_perfume(conn, other)
    with pytest.raises(NotFoundError):
        get_perfume(conn, other)


def test_expenses(conn):
    eid = create_expense(conn, description="Rent", amount=300000, expense_date="2024-02-01", category="rent")
    create_expense(conn, description="Ads", amount=5000, expense_date="2024-03-01")
    assert [r["description"] for r in list_expenses(conn, start_date="2024-02-15")] == ["Ads"]
    delete_expense(conn, eid)
    assert len(list_expenses(conn)) == 1
    with pytest.raises(ValidationError):
        create_expense(conn, description="Zero", amount=0, expense_date="2024-01-01")
    with pytest.raises(NotFoundError):
        delete_expense(conn, eid)
