from decimal import Decimal

import pytest

from main.models import Product
from stock.models import Recipe, RecipeComponent
from stock.services import (
    RecipeService, RecipeComponentService,
    ValidationError, NotFoundError, RecipeDeletionBlockedError, ConcurrencyConflictError,
)


# ==================== CREATE / UPDATE ====================

def test_create_recipe_with_components(tenant, product, flour, sugar, user):
    result = RecipeService.create(
        tenant.id,
        product_id=product.id,
        name="Sponge Cake",
        user_id=user.id,
        components=[
            {"material_id": flour.id, "quantity_required": "100", "waste_percentage": "5"},
            {"material_id": sugar.id, "quantity_required": "50"},
        ],
    )

    recipe = result["recipe"]
    assert recipe["is_active"] is False
    assert recipe["created_by_id"] == user.id
    assert [c["material_name"] for c in recipe["components"]] == ["Flour", "Sugar"]
    assert Decimal(recipe["components"][0]["effective_quantity"]) == Decimal("105")
    assert recipe["total_cost"] == Decimal("0.41")


def test_create_recipe_rolls_back_on_bad_component(tenant, product, flour, sugar):
    with pytest.raises(ValidationError) as exc:
        RecipeService.create(
            tenant.id,
            product_id=product.id,
            name="Broken",
            components=[
                {"material_id": flour.id, "quantity_required": "100"},
                {"material_id": sugar.id, "quantity_required": "0.0001"},
            ],
        )

    assert exc.value.field == "quantity_required"
    assert not Recipe.objects.exists()
    assert not RecipeComponent.objects.exists()


def test_create_recipe_for_foreign_product(other_tenant, product):
    with pytest.raises(NotFoundError):
        RecipeService.create(other_tenant.id, product_id=product.id, name="Stolen")


def test_create_active_recipe_replaces_current(cake, tenant, product):
    result = RecipeService.create(tenant.id, product_id=product.id, name="Cake v2", is_active=True)

    cake.refresh_from_db()
    assert not cake.is_active
    assert result["recipe"]["is_active"] is True


@pytest.mark.parametrize("data, field", [
    ({"yield_quantity": "0"}, "yield_quantity"),
    ({"yield_unit": "crate"}, "yield_unit"),
    ({"name": "  "}, "name"),
    ({"is_active": True}, "is_active"),
    ({"product_id": 3}, "product_id"),
])
def test_update_validation(cake, data, field):
    with pytest.raises(ValidationError) as exc:
        RecipeService.update(cake.tenant_id, cake.id, **data)

    assert exc.value.field == field


def test_update_yield_changes_cost_per_unit(cake):
    result = RecipeService.update(cake.tenant_id, cake.id, yield_quantity="2")

    assert result["recipe"]["cost_per_unit"] == Decimal("0.21")


# ==================== COMPONENTS ====================

@pytest.mark.parametrize("quantity, waste, field", [
    ("0", "0", "quantity_required"),
    ("0.0009", "0", "quantity_required"),
    (None, "0", "quantity_required"),
    ("1", "-1", "waste_percentage"),
    ("1", "1000", "waste_percentage"),
])
def test_component_validation(cake, make_material, quantity, waste, field):
    butter = make_material("Butter")

    with pytest.raises(ValidationError) as exc:
        RecipeComponentService.add(cake.tenant_id, cake.id, butter.id,
                                   quantity_required=quantity, waste_percentage=waste)

    assert exc.value.field == field


def test_component_accepts_boundaries(cake, make_material):
    butter = make_material("Butter")

    result = RecipeComponentService.add(cake.tenant_id, cake.id, butter.id,
                                        quantity_required="0.001", waste_percentage="999.99")

    assert result["component"]["sort_order"] == 2
    assert Decimal(result["component"]["effective_quantity"]) >= Decimal("0.001")


def test_component_duplicate_material(cake, flour):
    with pytest.raises(ValidationError) as exc:
        RecipeComponentService.add(cake.tenant_id, cake.id, flour.id, quantity_required="1")

    assert exc.value.field == "material_id"


def test_component_material_from_other_tenant(cake, make_material, other_tenant):
    foreign = make_material("Foreign Salt", tenant_obj=other_tenant)

    with pytest.raises(NotFoundError):
        RecipeComponentService.add(cake.tenant_id, cake.id, foreign.id, quantity_required="1")


def test_update_and_remove_component(cake):
    component = cake.components.get(material__name="Sugar")

    result = RecipeComponentService.update(cake.tenant_id, component.id, waste_percentage="10")
    assert Decimal(result["component"]["effective_quantity"]) == Decimal("55")

    RecipeComponentService.remove(cake.tenant_id, component.id)
    assert cake.components.count() == 1


# ==================== ACTIVATION ====================

def test_activate_deactivates_siblings(cake, make_recipe, flour):
    second = make_recipe([(flour, "90", "0")], name="Cake v2", is_active=False)

    result = RecipeService.activate(cake.tenant_id, second.id)

    cake.refresh_from_db()
    second.refresh_from_db()
    assert result["deactivated_recipe_ids"] == [cake.id]
    assert second.is_active
    assert not cake.is_active
    assert Recipe.objects.filter(product=cake.product, is_active=True).count() == 1


def test_activate_leaves_other_products_alone(cake, make_recipe, flour, tenant):
    cupcake = Product.objects.create(tenant=tenant, name="Cupcake", price=Decimal("4.00"))
    other = make_recipe([(flour, "20", "0")], name="Cupcake", is_active=False, product_obj=cupcake)

    result = RecipeService.activate(tenant.id, other.id)

    cake.refresh_from_db()
    assert cake.is_active
    assert result["deactivated_recipe_ids"] == []


def test_activate_is_idempotent(cake):
    result = RecipeService.activate(cake.tenant_id, cake.id)

    cake.refresh_from_db()
    assert cake.is_active
    assert result["deactivated_recipe_ids"] == []


def test_deactivate(cake):
    RecipeService.deactivate(cake.tenant_id, cake.id)

    cake.refresh_from_db()
    assert not cake.is_active
    assert RecipeService.get_active_for_product(cake.tenant_id, cake.product_id) is None


def test_racing_activation_is_reported_as_conflict(cake, make_recipe, flour, monkeypatch):
    second = make_recipe([(flour, "90", "0")], name="Cake v2", is_active=False)
    # the other activation committed after this one scanned for active siblings
    monkeypatch.setattr(RecipeService, "_lock_active_siblings", classmethod(lambda cls, tenant_id, recipe: []))

    with pytest.raises(ConcurrencyConflictError):
        RecipeService.activate(cake.tenant_id, second.id)

    cake.refresh_from_db()
    second.refresh_from_db()
    assert cake.is_active
    assert not second.is_active


def test_clone_copies_components_as_inactive_recipe(cake, user):
    result = RecipeService.clone(cake.tenant_id, cake.id, user_id=user.id, yield_quantity="2")

    clone = Recipe.objects.get(id=result["recipe"]["id"])
    assert result["cloned_from"] == cake.id
    assert clone.name == "Cake (Copy)"
    assert clone.product_id == cake.product_id
    assert not clone.is_active
    assert clone.yield_quantity == Decimal("2")
    assert clone.created_by_id == user.id
    copied = [(c.material_id, c.quantity_required, c.waste_percentage) for c in clone.components.all()]
    original = [(c.material_id, c.quantity_required, c.waste_percentage) for c in cake.components.all()]
    assert copied == original
    assert result["recipe"]["cost_per_unit"] == Decimal("0.21")


def test_clone_rejects_unknown_fields(cake):
    with pytest.raises(ValidationError):
        RecipeService.clone(cake.tenant_id, cake.id, is_active=True)

    assert Recipe.objects.count() == 1



# ==================== DELETE ====================

def test_delete_active_recipe_is_blocked(cake):
    with pytest.raises(RecipeDeletionBlockedError):
        RecipeService.delete(cake.tenant_id, cake.id)

    cake.refresh_from_db()
    assert not cake.is_deleted


def test_delete_inactive_recipe(cake):
    RecipeService.deactivate(cake.tenant_id, cake.id)
    RecipeService.delete(cake.tenant_id, cake.id)

    cake.refresh_from_db()
    assert cake.is_deleted
    assert not cake.components.exists()
    with pytest.raises(NotFoundError):
        RecipeService.get(cake.tenant_id, cake.id)


# ==================== COSTING ====================

def test_cost_breakdown(cake):
    result = RecipeService.get_cost_breakdown(cake.tenant_id, cake.id)

    flour_row, sugar_row = result["components"]
    assert result["total_cost"] == Decimal("0.41")
    assert flour_row["total_cost"] == Decimal("0.21")
    assert sugar_row["total_cost"] == Decimal("0.20")
    assert flour_row["cost_share_percentage"] == Decimal("51.22")


def test_cost_places_follow_settings(cake, settings):
    RecipeService.update(cake.tenant_id, cake.id, yield_quantity="3")

    assert RecipeService.calculate_cost(cake.tenant_id, cake.id)["cost_per_unit"] == Decimal("0.14")

    settings.STOCK_COST_PLACES = 3
    result = RecipeService.calculate_cost(cake.tenant_id, cake.id)
    assert result["cost_per_unit"] == Decimal("0.137")
    assert str(result["total_cost"]) == "0.410"



# ==================== TENANT SCOPING ====================

def test_recipe_is_invisible_to_other_tenant(cake, other_tenant):
    with pytest.raises(NotFoundError):
        RecipeService.get(other_tenant.id, cake.id)
    with pytest.raises(NotFoundError):
        RecipeService.activate(other_tenant.id, cake.id)

    assert RecipeService.list(other_tenant.id)["recipes"] == []
