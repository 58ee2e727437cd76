import pytest

import inventory
from errors import NotFoundError, ValidationError
from schemas import AdjustmentMode, InventoryPart, ServiceItem


@pytest.mark.parametrize("mode, quantity, expected", [
    (AdjustmentMode.set, 12, 12),
    (AdjustmentMode.add, 3, 8),
    (AdjustmentMode.remove, 5, 0),
])
def test_adjust_stock_modes(db, admin, part, mode, quantity, expected):
    result = inventory.adjust_stock(part["id"], quantity, "Cycle count", mode, admin)

    assert result["old_quantity"] == 5
    assert result["new_quantity"] == expected
    assert inventory.get_part(part["id"])["stock"] == expected

    log = inventory.list_adjustments(part["id"])[0]
    assert log["id"] == result["id"]
    assert log["old_quantity"] == 5 and log["new_quantity"] == expected
    assert log["quantity_change"] == abs(expected - 5)
    assert log["adjusted_by"] == admin.name


def test_stock_cannot_go_negative(db, admin, part):
    with pytest.raises(ValidationError):
        inventory.adjust_stock(part["id"], 6, "Damaged", AdjustmentMode.remove, admin)
    assert inventory.get_part(part["id"])["stock"] == 5
    assert inventory.list_adjustments() == []


def test_low_stock_notification_fires_once_when_crossing(db, admin, part):
    inventory.adjust_stock(part["id"], 1, "Used in bench test", AdjustmentMode.remove, admin)
    assert db["notification"].count_documents({"title": "Low stock"}) == 0

    inventory.adjust_stock(part["id"], 2, "Damaged", AdjustmentMode.remove, admin)
    assert db["notification"].count_documents({"title": "Low stock"}) == 1

    inventory.adjust_stock(part["id"], 1, "Damaged", AdjustmentMode.remove, admin)
    assert db["notification"].count_documents({"title": "Low stock"}) == 1
    assert [p["id"] for p in inventory.low_stock_parts()] == [part["id"]]


def test_find_part_by_sku(db, part):
    assert inventory.find_part_by_sku("BAT-CELL-01")["id"] == part["id"]
    assert inventory.find_part_by_sku("NOPE") is None


def test_update_part(db, part):
    inventory.update_part(part["id"], {"price": 1100, "supplier": None})
    assert inventory.get_part(part["id"])["price"] == 1100

    with pytest.raises(ValidationError):
        inventory.update_part(part["id"], {"supplier": None})
    with pytest.raises(NotFoundError):
        inventory.update_part("5f0c1b2a3d4e5f6a7b8c9d0e", {"price": 1})


def test_batch_upsert_splits_into_chunks(db, monkeypatch, part):
    monkeypatch.setattr(inventory, "BATCH_LIMIT", 2)
    commits = []
    original_commit = inventory.WriteBatch.commit

    def counting_commit(self):
        commits.append(len(self))
        original_commit(self)

    monkeypatch.setattr(inventory.WriteBatch, "commit", counting_commit)

    new_parts = [
        InventoryPart(part_number=f"FUSE-{i}", name=f"Fuse {i}", category="Electrical", price=20)
        for i in range(3)
    ]
    written = inventory.batch_upsert_parts(new_parts, [{"id": part["id"], "price": 950}])

    assert written == 4
    assert commits == [2, 2]
    assert len(inventory.list_parts()) == 4
    assert inventory.get_part(part["id"])["price"] == 950
    assert [p["name"] for p in inventory.list_parts("Electrical")] == ["Fuse 0", "Fuse 1", "Fuse 2"]


def test_batch_update_requires_id(db):
    with pytest.raises(ValidationError):
        inventory.batch_upsert_services([], [{"price": 10}])


def test_services_catalogue(db):
    inventory.add_service(ServiceItem(name="Wheel alignment", price=600, gst_rate=18))
    inventory.batch_upsert_services([ServiceItem(name="Battery health check", price=300)], [])
    assert [s["name"] for s in inventory.list_services()] == ["Battery health check", "Wheel alignment"]


def test_purchase_indent(db, admin, part):
    inventory.adjust_stock(part["id"], 4, "Used on bench", AdjustmentMode.remove, admin)
    inventory.add_part(InventoryPart(part_number="FUSE-30A", name="Fuse 30A", category="Electrical",
                                     price=20, stock=3, min_stock_level=20))
    inventory.add_part(InventoryPart(part_number="BRK-01", name="Brake pad", category="Mechanical",
                                     price=450, stock=30, min_stock_level=5))

    indent = inventory.purchase_indent()

    assert {i["part_number"]: i["reorder_qty"] for i in indent["items"]} == {"BAT-CELL-01": 10, "FUSE-30A": 37}
    assert indent["total"] == 10 * 1000 + 37 * 20
