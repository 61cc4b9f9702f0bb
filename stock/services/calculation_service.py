from typing import Dict, Any, List
from decimal import Decimal

from main.models import Product
from stock.models import Material, RecipeComponent, cost_places
from stock.services.base_service import (
    BaseService, success_response, NotFoundError, ValidationError,
    to_positive_int, round_decimal,
)
from .production_service import ProductionService
from .recipe_service import RecipeService


class InventoryCalculationService(BaseService):
    """Product-level questions answered through each product's active recipe."""

    model = Product

    @classmethod
    def _get_product(cls, tenant_id: int, product_id: int) -> Product:
        product = Product.objects.for_tenant(cls.require_tenant(tenant_id)).filter(id=product_id).first()
        if not product:
            raise NotFoundError("Product", product_id)
        return product

    @classmethod
    def _availability_for(cls, tenant_id: int, product: Product) -> Dict[str, Any]:
        recipe = RecipeService.get_active_for_product(tenant_id, product.id)
        if recipe is None:
            return {
                "product_id": product.id,
                "product_name": product.name,
                "has_recipe": False,
                "available_quantity": None,
                "can_produce": False,
                "limiting_material": None,
                "message": "No active recipe",
            }

        result = ProductionService.compute_max_producible(recipe)
        return {
            "product_id": product.id,
            "product_name": product.name,
            "has_recipe": True,
            "recipe_id": recipe.id,
            "available_quantity": result["max_quantity"],
            "can_produce": result["can_produce"],
            "limiting_material": result["limiting_material"],
            "message": result["message"],
        }

    @classmethod
    def calculate_available_quantity(cls, tenant_id: int, product_id: int) -> Dict[str, Any]:
        product = cls._get_product(tenant_id, product_id)
        return success_response(cls._availability_for(tenant_id, product))

    @classmethod
    def bulk_calculate_availability(cls, tenant_id: int, product_ids: List[int] = None) -> Dict[str, Any]:
        products = Product.objects.for_tenant(cls.require_tenant(tenant_id)).order_by("name")
        if product_ids:
            products = products.filter(id__in=product_ids)

        return success_response({
            "products": [cls._availability_for(tenant_id, p) for p in products],
        })

    @classmethod
    def check_production_feasibility(cls, tenant_id: int, product_id: int, quantity: Any) -> Dict[str, Any]:
        quantity = to_positive_int(quantity)
        product = cls._get_product(tenant_id, product_id)
        recipe = RecipeService.get_active_for_product(tenant_id, product.id)
        if recipe is None:
            raise ValidationError(f"Product '{product.name}' has no active recipe", "product_id")

        sufficiency = ProductionService.compute_sufficiency(recipe, quantity)
        max_result = ProductionService.compute_max_producible(recipe)

        return success_response({
            "product_id": product.id,
            **sufficiency,
            "max_quantity": max_result["max_quantity"],
            "limiting_material": max_result["limiting_material"],
        })

    @classmethod
    def get_material_requirements(cls, tenant_id: int, product_id: int, quantity: Any) -> Dict[str, Any]:
        quantity = to_positive_int(quantity)
        product = cls._get_product(tenant_id, product_id)
        recipe = RecipeService.get_active_for_product(tenant_id, product.id)
        if recipe is None:
            raise ValidationError(f"Product '{product.name}' has no active recipe", "product_id")

        requirements = []
        for component in recipe.components.all():
            required = component.required_for(quantity)
            available = component.material.stock_quantity
            requirements.append({
                "material_id": component.material_id,
                "material_name": component.material.name,
                "material_unit": component.material.unit,
                "quantity_per_unit": component.effective_quantity,
                "total_required": required,
                "available_stock": available,
                "shortage": max(Decimal("0"), required - available),
                "sufficient": available >= required,
                "estimated_cost": round_decimal(required * component.material.unit_cost, cost_places()),
            })

        return success_response({
            "product_id": product.id,
            "recipe_id": recipe.id,
            "quantity": quantity,
            "requirements": requirements,
        })

    @classmethod
    def get_low_stock_materials_in_active_recipes(cls, tenant_id: int) -> Dict[str, Any]:
        tenant_id = cls.require_tenant(tenant_id)
        components = (
            RecipeComponent.objects.filter(
                tenant_id=tenant_id,
                recipe__is_active=True,
                recipe__is_deleted=False,
                material__is_deleted=False,
            )
            .select_related("material", "recipe")
            .order_by("material__name", "recipe__name")
        )

        materials: Dict[int, Dict[str, Any]] = {}
        for component in components:
            material = component.material
            if not material.is_low_stock and not material.is_out_of_stock:
                continue
            entry = materials.setdefault(material.id, {
                "material_id": material.id,
                "material_name": material.name,
                "unit": material.unit,
                "stock_quantity": material.stock_quantity,
                "reorder_level": material.reorder_level,
                "stock_status": material.stock_status,
                "priority": "high" if material.stock_status in (
                    Material.StockStatus.CRITICAL, Material.StockStatus.OUT_OF_STOCK
                ) else "medium",
                "used_in_recipes": [],
            })
            entry["used_in_recipes"].append({
                "recipe_id": component.recipe_id,
                "recipe_name": component.recipe.name,
                "max_producible": component.max_producible,
            })

        items = sorted(materials.values(), key=lambda m: (m["priority"] != "high", m["material_name"]))
        return success_response({"materials": items, "count": len(items)})

    @classmethod
    def estimate_production_cost(cls, tenant_id: int, product_id: int, quantity: Any) -> Dict[str, Any]:
        quantity = to_positive_int(quantity)
        product = cls._get_product(tenant_id, product_id)
        recipe = RecipeService.get_active_for_product(tenant_id, product.id)
        if recipe is None:
            raise ValidationError(f"Product '{product.name}' has no active recipe", "product_id")

        places = cost_places()
        cost_per_unit = recipe.cost_per_unit
        total_cost = cost_per_unit * quantity
        margin = product.price - cost_per_unit

        return success_response({
            "product_id": product.id,
            "recipe_id": recipe.id,
            "quantity": quantity,
            "cost_per_unit": round_decimal(cost_per_unit, places),
            "total_cost": round_decimal(total_cost, places),
            "selling_price": product.price,
            "margin_per_unit": round_decimal(margin, places),
            "margin_percentage": (
                round_decimal(margin / product.price * 100, 2) if product.price > 0 else Decimal("0.00")
            ),
        })
