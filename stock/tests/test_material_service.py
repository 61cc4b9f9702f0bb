import random
from decimal import Decimal

import pytest

from stock.models import Material, InventoryTransaction, StockReference
from stock.services import (
    MaterialService, InventoryTransactionService,
    ValidationError, NotFoundError, InsufficientStockError, RecipeDeletionBlockedError,
)


# ==================== CRUD ====================

def test_create_records_opening_balance(tenant, user):
    result = MaterialService.create(
        tenant.id, user_id=user.id, name="Flour", unit="g", stock_quantity="1000", unit_cost="0.002"
    )

    material = Material.objects.get(id=result["material"]["id"])
    assert material.stock_quantity == Decimal("1000")

    trans = material.transactions.get()
    assert trans.transaction_type == InventoryTransaction.TransactionType.RESTOCK
    assert trans.reason == InventoryTransaction.Reason.PURCHASE
    assert trans.quantity_before == 0
    assert trans.quantity_after == Decimal("1000")
    assert trans.user_id == user.id
    assert trans.notes == "Opening balance"


def test_create_without_stock_has_no_ledger_rows(tenant):
    result = MaterialService.create(tenant.id, name="Salt", unit="g")

    assert not InventoryTransaction.objects.filter(material_id=result["material"]["id"]).exists()


@pytest.mark.parametrize("data, field", [
    ({"name": "", "unit": "g"}, "name"),
    ({"name": "Salt", "unit": "lbs"}, "unit"),
    ({"name": "Salt", "unit": "g", "unit_cost": "-1"}, "unit_cost"),
    ({"name": "Salt", "unit": "g", "reorder_level": "abc"}, "reorder_level"),
    ({"name": "Salt", "unit": "g", "stock_quantity": "-5"}, "stock_quantity"),
])
def test_create_validation(tenant, data, field):
    with pytest.raises(ValidationError) as exc:
        MaterialService.create(tenant.id, **data)

    assert exc.value.field == field
    assert not Material.objects.exists()


def test_duplicate_sku_is_rejected_within_tenant_only(tenant, other_tenant):
    MaterialService.create(tenant.id, name="Flour", unit="g", sku="FL-1")
    MaterialService.create(other_tenant.id, name="Flour", unit="g", sku="FL-1")

    with pytest.raises(ValidationError) as exc:
        MaterialService.create(tenant.id, name="Flour 2", unit="g", sku="FL-1")
    assert exc.value.field == "sku"


def test_bulk_create_is_all_or_nothing(tenant):
    with pytest.raises(ValidationError) as exc:
        MaterialService.bulk_create(tenant.id, [
            {"name": "Flour", "unit": "g", "stock_quantity": "100"},
            {"name": "Sugar", "unit": "stone"},
        ])

    assert exc.value.details["errors"][0]["index"] == 1
    assert not Material.objects.exists()

    result = MaterialService.bulk_create(tenant.id, [
        {"name": "Flour", "unit": "g", "stock_quantity": "100"},
        {"name": "Sugar", "unit": "g"},
    ])
    assert result["count"] == 2


def test_update_rejects_stock_quantity(flour):
    with pytest.raises(ValidationError) as exc:
        MaterialService.update(flour.tenant_id, flour.id, stock_quantity="5")

    assert exc.value.field == "stock_quantity"
    flour.refresh_from_db()
    assert flour.stock_quantity == Decimal("1050")


def test_update_changes_descriptive_fields(flour):
    result = MaterialService.update(flour.tenant_id, flour.id, name="Wheat Flour", unit_cost="0.003")

    assert result["material"]["name"] == "Wheat Flour"
    assert result["material"]["unit_cost"] == "0.0030"


def test_delete_blocked_by_active_recipe(cake, flour):
    with pytest.raises(RecipeDeletionBlockedError) as exc:
        MaterialService.delete(flour.tenant_id, flour.id)

    assert exc.value.blockers == ["Cake"]
    flour.refresh_from_db()
    assert not flour.is_deleted


def test_delete_allowed_once_recipe_inactive(cake, flour):
    cake.is_active = False
    cake.save()

    MaterialService.delete(flour.tenant_id, flour.id)

    flour.refresh_from_db()
    assert flour.is_deleted
    with pytest.raises(NotFoundError):
        MaterialService.get(flour.tenant_id, flour.id)


# ==================== QUERIES ====================

def test_list_filters_by_status(tenant, make_material):
    make_material("Flour", stock="1000", reorder_level="100")
    make_material("Sugar", stock="40", reorder_level="100")
    make_material("Eggs", stock="0", reorder_level="10", unit="pcs")

    low = MaterialService.list(tenant.id, status="low_stock")
    out = MaterialService.list(tenant.id, status="out_of_stock")

    assert [m["name"] for m in low["materials"]] == ["Sugar"]
    assert [m["name"] for m in out["materials"]] == ["Eggs"]

    with pytest.raises(ValidationError):
        MaterialService.list(tenant.id, status="plenty")


def test_list_rejects_unknown_sort(tenant):
    with pytest.raises(ValidationError) as exc:
        MaterialService.list(tenant.id, sort_by="password")

    assert exc.value.field == "sort_by"


# ==================== STOCK ADJUSTMENTS ====================

def test_restock_and_deduct(flour, user):
    MaterialService.adjust_stock(flour.tenant_id, flour.id, "restock", "50", "purchase", user_id=user.id)
    result = MaterialService.adjust_stock(flour.tenant_id, flour.id, "deduction", "100", "waste")

    flour.refresh_from_db()
    assert flour.stock_quantity == Decimal("1000")
    assert result["transaction"]["quantity_change"] == "-100.0000"
    assert result["transaction"]["quantity_after"] == "1000.0000"


def test_manual_adjustment_keeps_sign(flour):
    MaterialService.adjust_stock(flour.tenant_id, flour.id, "adjustment", "-50", "count_adjustment")

    flour.refresh_from_db()
    assert flour.stock_quantity == Decimal("1000")


def test_deduction_beyond_stock_is_rejected(flour):
    with pytest.raises(InsufficientStockError) as exc:
        MaterialService.adjust_stock(flour.tenant_id, flour.id, "deduction", "1051", "waste")

    assert exc.value.available == Decimal("1050")
    flour.refresh_from_db()
    assert flour.stock_quantity == Decimal("1050")
    assert not flour.transactions.exists()


@pytest.mark.parametrize("kwargs, field", [
    ({"transaction_type": "theft", "quantity": "1", "reason": "other"}, "transaction_type"),
    ({"transaction_type": "restock", "quantity": "0", "reason": "purchase"}, "quantity"),
    ({"transaction_type": "restock", "quantity": "x", "reason": "purchase"}, "quantity"),
    ({"transaction_type": "restock", "quantity": "1", "reason": "gift"}, "reason"),
    ({"transaction_type": "restock", "quantity": "1", "reason": "purchase",
      "reference": {"type": "invoice", "id": 3}}, "reference"),
])
def test_adjust_stock_validation(flour, kwargs, field):
    with pytest.raises(ValidationError) as exc:
        MaterialService.adjust_stock(flour.tenant_id, flour.id, **kwargs)

    assert exc.value.field == field


def test_adjust_stock_with_unknown_user(flour):
    with pytest.raises(NotFoundError):
        MaterialService.adjust_stock(flour.tenant_id, flour.id, "restock", "1", "purchase", user_id=999)


def test_adjust_stock_keeps_reference(flour):
    MaterialService.adjust_stock(
        flour.tenant_id, flour.id, "adjustment", "-5", "count_adjustment",
        reference={"type": "adjustment", "id": 17},
    )

    trans = flour.transactions.get()
    assert trans.reference == StockReference.adjustment(17)


@pytest.mark.parametrize("transaction_type, change", [
    (InventoryTransaction.TransactionType.DEDUCTION, Decimal("5")),
    (InventoryTransaction.TransactionType.RESTOCK, Decimal("-5")),
    (InventoryTransaction.TransactionType.ADJUSTMENT, Decimal("0")),
])
def test_apply_change_rejects_movement_against_its_type(flour, transaction_type, change):
    with pytest.raises(ValidationError):
        MaterialService.apply_change(flour, change, transaction_type, InventoryTransaction.Reason.OTHER)

    flour.refresh_from_db()
    assert flour.stock_quantity == Decimal("1050")
    assert not InventoryTransaction.objects.exists()



def test_random_adjustments_never_go_negative(tenant, make_material):
    material = make_material("Milk", stock="100", unit="ml")
    rng = random.Random(20240611)
    expected = Decimal("100")

    for _ in range(150):
        transaction_type = rng.choice(["restock", "deduction", "adjustment"])
        quantity = Decimal(rng.randint(1, 6000)) / 100
        if transaction_type == "adjustment" and rng.random() < 0.5:
            quantity = -quantity
        change = MaterialService.resolve_change(transaction_type, quantity)
        reason = "purchase" if change > 0 else "waste"

        try:
            MaterialService.adjust_stock(tenant.id, material.id, transaction_type, quantity, reason)
        except InsufficientStockError:
            assert expected + change < 0
        else:
            expected += change

        material.refresh_from_db()
        assert material.stock_quantity >= 0
        assert material.stock_quantity == expected

    net = sum(t.quantity_change for t in material.transactions.all())
    assert Decimal("100") + net == material.stock_quantity


# ==================== TENANT SCOPING ====================

def test_material_is_invisible_to_other_tenant(flour, other_tenant):
    with pytest.raises(NotFoundError):
        MaterialService.get(other_tenant.id, flour.id)
    with pytest.raises(NotFoundError):
        MaterialService.adjust_stock(other_tenant.id, flour.id, "restock", "1", "purchase")

    assert MaterialService.list(other_tenant.id)["materials"] == []


@pytest.mark.parametrize("tenant_id", [None, ""])
def test_missing_tenant_is_rejected(flour, tenant_id):
    with pytest.raises(ValidationError) as exc:
        MaterialService.adjust_stock(tenant_id, flour.id, "restock", "1", "purchase")

    assert exc.value.field == "tenant_id"


# ==================== LEDGER QUERIES ====================

def test_summary_for_material(flour):
    MaterialService.adjust_stock(flour.tenant_id, flour.id, "restock", "50", "purchase")
    MaterialService.adjust_stock(flour.tenant_id, flour.id, "deduction", "20", "waste")

    summary = InventoryTransactionService.get_summary_for_material(flour.tenant_id, flour.id)

    assert summary["total_transactions"] == 2
    assert Decimal(summary["net_change"]) == Decimal("30")


def test_transaction_list_filters_by_type(flour):
    MaterialService.adjust_stock(flour.tenant_id, flour.id, "restock", "50", "purchase")
    MaterialService.adjust_stock(flour.tenant_id, flour.id, "deduction", "20", "waste")

    result = InventoryTransactionService.list(flour.tenant_id, transaction_type="deduction")

    assert [t["quantity_change"] for t in result["transactions"]] == ["-20.0000"]
