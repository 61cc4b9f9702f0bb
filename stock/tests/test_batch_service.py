from decimal import Decimal

import pytest

from main.models import Product
from stock.models import InventoryTransaction
from stock.services import (
    BatchProductionService, ProductionService,
    ValidationError, NotFoundError,
)


@pytest.fixture
def bread(tenant, make_recipe, flour):
    """Shares flour with the cake: 200g a loaf, no waste."""
    product = Product.objects.create(tenant=tenant, name="Bread", price=Decimal("5.00"))
    make_recipe([(flour, "200", "0")], name="Bread", product_obj=product)
    return product


# ==================== REQUIREMENTS ====================

def test_batch_requirements(cake, product, tenant):
    result = BatchProductionService.calculate_batch_requirements(tenant.id, product.id, 4)

    assert result["can_produce"] is True
    assert result["shortages"] == []
    flour_row, sugar_row = result["material_requirements"]
    assert flour_row["total_required"] == Decimal("420")
    assert flour_row["remaining_after_production"] == Decimal("630")
    assert sugar_row["total_required"] == Decimal("200")
    assert result["cost_analysis"] == {
        "total_material_cost": Decimal("1.64"),
        "cost_per_unit": Decimal("0.41"),
    }


def test_batch_requirements_over_capacity(cake, product, tenant):
    result = BatchProductionService.calculate_batch_requirements(tenant.id, product.id, 11)

    assert result["can_produce"] is False
    shortages = {s["material_name"]: s["shortage"] for s in result["shortages"]}
    assert shortages == {"Flour": Decimal("105"), "Sugar": Decimal("50")}


def test_batch_requirements_need_active_recipe(tenant):
    tea = Product.objects.create(tenant=tenant, name="Tea", price=Decimal("2.00"))

    with pytest.raises(ValidationError):
        BatchProductionService.calculate_batch_requirements(tenant.id, tea.id, 1)
    with pytest.raises(ValidationError):
        BatchProductionService.calculate_batch_requirements(tenant.id, tea.id, 0)


# ==================== MULTI PRODUCT ====================

def test_shared_material_plan_infeasible_combined(cake, product, bread, tenant, flour):
    result = BatchProductionService.calculate_multi_product_batch(tenant.id, [
        {"product_id": product.id, "quantity": 6},
        {"product_id": bread.id, "quantity": 3},
    ])

    # 630g and 600g of flour each fit in 1050g, together they do not
    assert [p["can_produce"] for p in result["production_plan"]] == [True, True]
    assert result["is_feasible"] is False
    assert [(s["material_name"], s["shortage"]) for s in result["material_shortages"]] == [
        ("Flour", Decimal("180")),
    ]

    by_material = {m["material_name"]: m for m in result["aggregated_material_requirements"]}
    assert by_material["Flour"]["total_required"] == Decimal("1230")
    assert by_material["Flour"]["is_sufficient"] is False
    assert [u["product_name"] for u in by_material["Flour"]["used_in_products"]] == ["Cake", "Bread"]
    assert by_material["Sugar"]["is_sufficient"] is True
    assert flour.transactions.count() == 0


def test_shared_material_plan_feasible(cake, product, bread, tenant):
    result = BatchProductionService.calculate_multi_product_batch(tenant.id, [
        {"product_id": product.id, "quantity": 4},
        {"product_id": bread.id, "quantity": 2},
    ])

    assert result["is_feasible"] is True
    assert result["material_shortages"] == []
    assert result["total_products"] == 2
    # cake 4 x 0.41 + bread 2 x 0.40
    assert result["total_production_cost"] == Decimal("2.44")


def test_plan_merges_repeated_products(cake, product, tenant):
    result = BatchProductionService.calculate_multi_product_batch(tenant.id, [
        {"product_id": product.id, "quantity": 6},
        {"product_id": str(product.id), "quantity": "5"},
    ])

    assert result["total_products"] == 1
    assert result["production_plan"][0]["quantity"] == 11
    assert result["is_feasible"] is False


def test_plan_with_product_without_recipe(cake, product, tenant):
    tea = Product.objects.create(tenant=tenant, name="Tea", price=Decimal("2.00"))

    result = BatchProductionService.calculate_multi_product_batch(tenant.id, [
        {"product_id": product.id, "quantity": 1},
        {"product_id": tea.id, "quantity": 1},
    ])

    assert result["is_feasible"] is False
    assert result["production_plan"][1]["error"] == "No active recipe"
    assert result["material_shortages"] == []


@pytest.mark.parametrize("plan", [
    [],
    None,
    [{"quantity": 1}],
    [{"product_id": "abc", "quantity": 1}],
])
def test_plan_validation(tenant, plan):
    with pytest.raises(ValidationError):
        BatchProductionService.calculate_multi_product_batch(tenant.id, plan)


def test_plan_is_tenant_scoped(cake, product, other_tenant):
    with pytest.raises(NotFoundError):
        BatchProductionService.calculate_multi_product_batch(other_tenant.id, [
            {"product_id": product.id, "quantity": 1},
        ])


# ==================== OPTIMAL BATCH SIZE ====================

def test_optimal_batch_size(tenant, make_material, make_recipe):
    jam = Product.objects.create(tenant=tenant, name="Jam", price=Decimal("6.00"))
    berries = make_material("Berries", stock="30", unit_cost="0.5")
    make_recipe([(berries, "1", "0")], name="Jam", product_obj=jam)

    result = BatchProductionService.calculate_optimal_batch_size(tenant.id, jam.id)

    assert result["maximum_producible"] == 30
    assert [(b["batch_size"], b["utilization_percentage"]) for b in result["suggested_batches"]] == [
        (10, Decimal("33.33")),
        (25, Decimal("83.33")),
    ]
    assert result["recommendation"] == "Recommended batch size: 10 units for optimal cost efficiency."


def test_optimal_batch_size_with_little_stock(cake, product, tenant):
    ProductionService.deduct_materials_for_production(tenant.id, cake.id, 5)

    result = BatchProductionService.calculate_optimal_batch_size(tenant.id, product.id)

    assert result["maximum_producible"] == 5
    assert result["suggested_batches"] == []
    assert result["recommendation"].startswith("Very limited production capacity")


def test_optimal_batch_size_without_stock(cake, product, tenant):
    ProductionService.deduct_materials_for_production(tenant.id, cake.id, 10)

    result = BatchProductionService.calculate_optimal_batch_size(tenant.id, product.id)

    assert result["maximum_producible"] == 0
    assert result["recommendation"] == "Cannot produce. Material shortages detected."


# ==================== SIMULATION ====================

def test_simulation_matches_real_production(cake, product, tenant, flour, sugar):
    simulated = BatchProductionService.simulate_production(tenant.id, product.id, 10)

    changes = {c["material_name"]: c for c in simulated["material_changes"]}
    assert simulated["can_produce"] is True
    assert changes["Flour"]["consumed"] == Decimal("1050")
    assert changes["Flour"]["will_be_out_of_stock"] is True
    assert not InventoryTransaction.objects.exists()

    ProductionService.deduct_materials_for_production(tenant.id, cake.id, 10)
    flour.refresh_from_db()
    sugar.refresh_from_db()
    assert flour.stock_quantity == changes["Flour"]["after_production"]
    assert sugar.stock_quantity == changes["Sugar"]["after_production"]


def test_simulation_over_capacity(cake, product, tenant):
    result = BatchProductionService.simulate_production(tenant.id, product.id, 11)

    assert result["can_produce"] is False
    assert len(result["shortages"]) == 2
    assert "material_changes" not in result


# ==================== CAPACITY FORECAST ====================

def test_capacity_forecast_until_depletion(cake, product, tenant):
    result = BatchProductionService.get_production_capacity_forecast(tenant.id, product.id, 7, "3")

    forecast = result["capacity_forecast"]
    assert [day["production_capacity"] for day in forecast] == [10, 7, 4, 1, 0]
    assert forecast[1]["capacity_percentage"] == Decimal("70.00")
    assert result["days_until_depletion"] == 4
    assert result["limiting_material"]["material_name"] == "Flour"


def test_capacity_forecast_without_usage(cake, product, tenant):
    result = BatchProductionService.get_production_capacity_forecast(tenant.id, product.id, 3)

    assert [day["production_capacity"] for day in result["capacity_forecast"]] == [10, 10, 10, 10]
    assert result["days_until_depletion"] is None


@pytest.mark.parametrize("days, usage, field", [
    (0, 1, "days"),
    (366, 1, "days"),
    (7, "-1", "avg_daily_usage"),
    (7, "lots", "avg_daily_usage"),
])
def test_capacity_forecast_validation(cake, product, tenant, days, usage, field):
    with pytest.raises(ValidationError) as exc:
        BatchProductionService.get_production_capacity_forecast(tenant.id, product.id, days, usage)

    assert exc.value.field == field
