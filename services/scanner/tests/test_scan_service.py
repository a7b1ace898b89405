import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import Update, event, select
from sqlalchemy.exc import OperationalError

from stockscan.main import app
from stockscan.application.errors import AuditWriteFailure, ProductNotFound
from stockscan.application.schemas import ScanEvent
from stockscan.application.service import ScanService, MovementService
from stockscan.domain.models import Product, InventoryMovement
from stockscan.infrastructure.db import get_db


def scan(barcode="ABC123", device_id="ESP32_01"):
    return ScanEvent(barcode=barcode, device_id=device_id, timestamp="2024-05-01T08:00:00")


@pytest.mark.parametrize("quantity", [1, 2, 5, 100])
def test_single_scan_takes_exactly_one_off(db_session, make_product, stock_of, movements_of, quantity):
    product = make_product(sku="SKU-Q", quantity=quantity)

    result = ScanService(db_session).process(scan(barcode="SKU-Q"))

    assert result.product.old_quantity == quantity
    assert result.product.new_quantity == quantity - 1
    assert stock_of(product.id) == quantity - 1
    movements = movements_of(product.id)
    assert [(m.movement_type, m.quantity) for m in movements] == [("out", 1)]


def test_product_without_sku_is_unreachable(db_session, make_product, movement_count):
    make_product(sku=None, quantity=3)

    with pytest.raises(ProductNotFound):
        ScanService(db_session).process(scan(barcode="None"))
    assert movement_count() == 0


def test_ambiguous_barcode_treated_as_not_found():
    db = MagicMock()
    db.execute.return_value.scalars.return_value.all.return_value = [
        Product(id=1, sku="DUP", name="A", quantity=3),
        Product(id=2, sku="DUP", name="B", quantity=3),
    ]

    with pytest.raises(ProductNotFound) as excinfo:
        ScanService(db).process(scan(barcode="DUP"))

    assert excinfo.value.barcode == "DUP"
    db.add.assert_not_called()
    db.commit.assert_not_called()


def test_audit_write_failure_aborts_before_stock_change(db_session, make_product, stock_of, movement_count):
    product = make_product(sku="ABC123", quantity=5)
    failure = OperationalError("INSERT INTO inventory_movements", {}, Exception("disk I/O error"))

    with patch.object(db_session, "commit", side_effect=failure):
        with pytest.raises(AuditWriteFailure):
            ScanService(db_session).process(scan())

    assert stock_of(product.id) == 5
    assert movement_count() == 0


def test_stock_write_failure_still_reports_success(db_session, make_product, stock_of, movements_of, caplog):
    product = make_product(sku="ABC123", quantity=5)
    real_execute = db_session.execute

    def execute(statement, *args, **kwargs):
        if isinstance(statement, Update):
            raise OperationalError("UPDATE products", {}, Exception("database is locked"))
        return real_execute(statement, *args, **kwargs)

    with patch.object(db_session, "execute", side_effect=execute), caplog.at_level(logging.ERROR):
        result = ScanService(db_session).process(scan())

    assert result.success is True
    assert result.product.old_quantity == 5
    assert result.product.new_quantity == 4
    # The movement log keeps the scan even though stock did not move
    assert stock_of(product.id) == 5
    movements = movements_of(product.id)
    assert len(movements) == 1

    # The error log is the only trace of the missed decrement
    failures = [r for r in caplog.records if r.levelno == logging.ERROR and "Error updating stock" in r.getMessage()]
    assert len(failures) == 1
    assert failures[0].extra_fields == {"product_id": product.id, "movement_id": movements[0].id}
    assert failures[0].exc_info is not None


def test_audit_write_failure_maps_to_500_envelope(client, session_factory, make_product):
    make_product(sku="ABC123", quantity=5)
    failure = OperationalError("INSERT INTO inventory_movements", {}, Exception("disk I/O error"))

    def override_get_db():
        db = session_factory()
        try:
            with patch.object(db, "commit", side_effect=failure):
                yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    resp = client.post("/esp32-webhook", json={"barcode": "ABC123", "device_id": "ESP32_01", "timestamp": "1"})

    assert resp.status_code == 500
    assert resp.json() == {"success": False, "message": "Gagal mencatat pergerakan"}


def test_concurrent_scans_never_drive_stock_negative(session_factory, make_product, stock_of, movements_of):
    product = make_product(sku="LAST-ONE", quantity=1)
    workers = 10

    def scan_once(i):
        db = session_factory()
        try:
            return ScanService(db).process(scan(barcode="LAST-ONE", device_id=f"ESP32_{i:02d}"))
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(scan_once, range(workers)))

    assert all(r.success for r in results)
    assert all(r.product.new_quantity >= 0 for r in results)
    # Exactly one scan found stock to take
    assert sorted(r.product.new_quantity for r in results) == [0] * workers
    assert stock_of(product.id) == 0
    assert len(movements_of(product.id)) == workers


def test_concurrent_scans_do_not_lose_decrements(session_factory, make_product, stock_of):
    product = make_product(sku="BULK", quantity=50)
    workers = 20

    def scan_once(i):
        db = session_factory()
        try:
            return ScanService(db).process(scan(barcode="BULK", device_id=f"ESP32_{i:02d}"))
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(scan_once, range(workers)))

    assert stock_of(product.id) == 50 - workers
    # Each decrement produced a distinct post-scan value
    assert sorted(r.product.new_quantity for r in results) == list(range(50 - workers, 50))


def test_movement_timestamps_follow_insertion_order(engine, session_factory, make_product):
    make_product(sku="ABC123", quantity=5)
    a_at_insert = threading.Event()
    b_done = threading.Event()

    def hold_device_a(conn, cursor, statement, parameters, context, executemany):
        if statement.startswith("INSERT INTO inventory_movements") and "DEV_A" in tuple(parameters):
            a_at_insert.set()
            b_done.wait(5)

    def scan_once(device_id):
        db = session_factory()
        try:
            return ScanService(db).process(scan(device_id=device_id))
        finally:
            db.close()

    event.listen(engine, "before_cursor_execute", hold_device_a)
    try:
        with ThreadPoolExecutor(max_workers=1) as pool:
            pending_a = pool.submit(scan_once, "DEV_A")
            assert a_at_insert.wait(5)
            scan_once("DEV_B")
            b_done.set()
            pending_a.result()
    finally:
        event.remove(engine, "before_cursor_execute", hold_device_a)

    with session_factory() as db:
        rows = db.execute(
            select(InventoryMovement.device_id, InventoryMovement.created_at).order_by(InventoryMovement.id)
        ).all()
        newest = MovementService(db).recent(limit=1)

    assert [r.device_id for r in rows] == ["DEV_B", "DEV_A"]
    assert rows[0].created_at <= rows[1].created_at
    assert newest[0].device_id == "DEV_A"
