from decimal import Decimal

import pytest

from main.models import Tenant, User, Category, Product
from stock.models import Material, Recipe, RecipeComponent


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(name="Main Bakery", slug="main-bakery")


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(name="Other Bakery", slug="other-bakery")


@pytest.fixture
def user(tenant):
    return User.objects.create(
        tenant=tenant,
        first_name="Ali",
        last_name="Karimov",
        email="ali@example.com",
        role=User.RoleChoices.CASHIER,
    )


@pytest.fixture
def product(tenant):
    category = Category.objects.create(tenant=tenant, name="Cakes")
    return Product.objects.create(tenant=tenant, category=category, name="Cake", price=Decimal("25.00"))


@pytest.fixture
def make_material(tenant):
    def _make(name, stock="0", unit=Material.Unit.G, unit_cost="0", reorder_level="0", tenant_obj=None):
        return Material.objects.create(
            tenant=tenant_obj or tenant,
            name=name,
            unit=unit,
            stock_quantity=Decimal(stock),
            unit_cost=Decimal(unit_cost),
            reorder_level=Decimal(reorder_level),
        )
    return _make


@pytest.fixture
def make_recipe(tenant, product):
    def _make(components, name="Cake", is_active=True, yield_quantity="1", product_obj=None):
        recipe = Recipe.objects.create(
            tenant=tenant,
            product=product_obj or product,
            name=name,
            yield_quantity=Decimal(yield_quantity),
            is_active=is_active,
        )
        for index, (material, quantity, waste) in enumerate(components):
            RecipeComponent.objects.create(
                tenant=tenant,
                recipe=recipe,
                material=material,
                quantity_required=Decimal(quantity),
                waste_percentage=Decimal(waste),
                sort_order=index,
            )
        return recipe
    return _make


@pytest.fixture
def flour(make_material):
    return make_material("Flour", stock="1050", unit_cost="0.002")


@pytest.fixture
def sugar(make_material):
    return make_material("Sugar", stock="500", unit_cost="0.004")


@pytest.fixture
def cake(make_recipe, flour, sugar):
    """Flour 100g at 5% waste and sugar 50g, enough stock for exactly ten."""
    return make_recipe([(flour, "100", "5"), (sugar, "50", "0")])
