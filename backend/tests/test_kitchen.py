from decimal import Decimal

import pytest
from fastapi import HTTPException

from backend.app.routers import kitchen as kitchen_router
from backend.app.routers.kitchen import complete_prep, start_prep

CTX = {"tenant_id": "tenant-1", "tax_rate": Decimal("0.05"), "user": {"id": "user-1", "role": "KITCHEN"}}


def _item(item_id, status, price=1000):
    return {
        "id": item_id,
        "product_id": f"prod-{item_id}",
        "category_id": None,
        "product_name": f"Item {item_id}",
        "unit_price_cents": price,
        "quantity": 1,
        "discount_percent": Decimal("0"),
        "status": status,
        "notes": None,
        "created_at": None,
    }


class _KitchenDb:
    def __init__(self, order_status="IN_KITCHEN", items=None):
        self.order = {"id": "o-1", "status": order_status, "subtotal_cents": 0, "total_cents": 0}
        self.items = {it["id"]: it for it in (items or [])}
        self.prep = []


class _KitchenCursor:
    def __init__(self, db: _KitchenDb):
        self.db = db
        self.rows = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        text = " ".join(str(sql or "").lower().split())
        db = self.db
        if "from pos_order_items i join pos_orders o" in text:
            it = db.items.get(params[1])
            self.rows = (
                [{"id": it["id"], "order_id": "o-1", "status": it["status"], "order_status": db.order["status"]}]
                if it
                else []
            )
        elif text.startswith("update pos_order_items set status = 'in_progress'"):
            db.items[params[0]]["status"] = "IN_PROGRESS"
            self.rows = []
        elif text.startswith("update pos_order_items set status = 'ready'"):
            db.items[params[0]]["status"] = "READY"
            self.rows = []
        elif text.startswith("update kitchen_prep_logs set started_at = coalesce(started_at, now())"):
            db.prep.append(("start", params[0]))
            self.rows = []
        elif text.startswith("update kitchen_prep_logs set started_at = coalesce(started_at, sent_at)"):
            db.prep.append(("complete", params[0]))
            self.rows = [{"id": "log-1", "started_at": None, "completed_at": None, "prep_seconds": 312}]
        elif "from pos_order_items i left join products" in text:
            self.rows = [dict(it) for it in db.items.values()]
        elif "from order_discounts" in text:
            self.rows = [{"applied": 0}]
        elif text.startswith("update pos_orders set subtotal_cents"):
            sub, _tax, _disc, total, status, _oid = params
            db.order.update(subtotal_cents=sub, total_cents=total)
            if status is not None:
                db.order["status"] = status
            self.rows = [{"status": db.order["status"]}]
        else:
            raise AssertionError(f"unexpected SQL in test cursor: {text}")

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return list(self.rows)


class _Tx:
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class _Conn:
    def __init__(self, db):
        self.db = db

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def transaction(self):
        return _Tx()

    def cursor(self):
        return _KitchenCursor(self.db)


def _patch(monkeypatch, db):
    monkeypatch.setattr(kitchen_router, "get_conn", lambda: _Conn(db))
    monkeypatch.setattr(kitchen_router, "set_tenant_context", lambda conn, tid: None)
    return db


def test_start_marks_item_in_progress_and_keeps_order_in_kitchen(monkeypatch):
    db = _patch(monkeypatch, _KitchenDb(items=[_item("i1", "SENT"), _item("i2", "SENT")]))
    out = start_prep("i1", ctx=CTX)
    assert out == {"ok": True, "order_status": "IN_KITCHEN"}
    assert db.items["i1"]["status"] == "IN_PROGRESS"
    assert db.prep == [("start", "i1")]


def test_completing_last_item_makes_order_ready(monkeypatch):
    db = _patch(monkeypatch, _KitchenDb(items=[_item("i1", "IN_PROGRESS"), _item("i2", "READY", 500)]))
    out = complete_prep("i1", ctx=CTX)
    assert out == {"ok": True, "prep_seconds": 312, "order_status": "READY"}
    assert db.order["status"] == "READY"
    assert db.order["subtotal_cents"] == 1500
    assert db.prep == [("complete", "i1")]


def test_completing_one_of_several_items_stays_in_kitchen(monkeypatch):
    db = _patch(monkeypatch, _KitchenDb(items=[_item("i1", "IN_PROGRESS"), _item("i2", "SENT")]))
    assert complete_prep("i1", ctx=CTX)["order_status"] == "IN_KITCHEN"
    assert db.items["i2"]["status"] == "SENT"


@pytest.mark.parametrize("closed", ["PAID", "CANCELLED"])
@pytest.mark.parametrize("action", [start_prep, complete_prep])
def test_closed_orders_keep_their_status(monkeypatch, closed, action):
    db = _patch(monkeypatch, _KitchenDb(order_status=closed, items=[_item("i1", "IN_PROGRESS")]))
    with pytest.raises(HTTPException) as exc:
        action("i1", ctx=CTX)
    assert exc.value.status_code == 400
    assert exc.value.detail == "order is closed"
    assert db.order["status"] == closed
    assert db.items["i1"]["status"] == "IN_PROGRESS"
    assert db.prep == []


@pytest.mark.parametrize("status", ["NEW", "READY", "SERVED", "VOID"])
def test_only_kitchen_items_can_be_prepared(monkeypatch, status):
    db = _patch(monkeypatch, _KitchenDb(items=[_item("i1", status)]))
    with pytest.raises(HTTPException) as exc:
        complete_prep("i1", ctx=CTX)
    assert exc.value.status_code == 400
    assert exc.value.detail == "item is not waiting in the kitchen"
    assert db.prep == []


def test_unknown_item_is_404(monkeypatch):
    _patch(monkeypatch, _KitchenDb())
    with pytest.raises(HTTPException) as exc:
        start_prep("missing", ctx=CTX)
    assert exc.value.status_code == 404
