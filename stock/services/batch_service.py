"""
Batch planning on top of the production engine.

Everything here is read-only: requirements, suggested batch sizes, plans that
share materials across several products, dry-run simulations and capacity
forecasts. Nothing is deducted until ``ProductionService`` is called.
"""
from datetime import timedelta
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Dict, Any, List, Tuple

from django.utils import timezone

from main.models import Product
from stock.models import Recipe, cost_places
from stock.services.base_service import (
    BaseService, success_response, ValidationError, NotFoundError,
    to_decimal, to_positive_int, round_decimal,
)
from .production_service import ProductionService
from .recipe_service import RecipeService

SUGGESTED_BATCH_SIZES = (10, 25, 50, 100, 200, 500)
SMALL_CAPACITY = 10
MAX_FORECAST_DAYS = 365


class BatchProductionService(BaseService):
    model = Product

    @classmethod
    def _active_recipe(cls, tenant_id: int, product_id: Any) -> Tuple[Product, Recipe]:
        product = Product.objects.for_tenant(cls.require_tenant(tenant_id)).filter(id=product_id).first()
        if not product:
            raise NotFoundError("Product", product_id)
        recipe = RecipeService.get_active_for_product(tenant_id, product.id)
        if recipe is None:
            raise ValidationError(f"Product '{product.name}' has no active recipe", "product_id")
        return product, recipe

    @classmethod
    def requirements_for(cls, product: Product, recipe: Recipe, quantity: int) -> Dict[str, Any]:
        places = cost_places()
        sufficiency = ProductionService.compute_sufficiency(recipe, quantity)

        requirements = []
        total_cost = Decimal("0")
        for component in recipe.components.all():
            material = component.material
            required = component.required_for(quantity)
            cost = required * material.unit_cost
            total_cost += cost
            requirements.append({
                "material_id": material.id,
                "material_name": material.name,
                "sku": material.sku,
                "unit": material.unit,
                "quantity_per_unit": component.quantity_required,
                "waste_percentage": component.waste_percentage,
                "effective_quantity_per_unit": component.effective_quantity,
                "total_required": required,
                "current_stock": material.stock_quantity,
                "remaining_after_production": material.stock_quantity - required,
                "is_sufficient": material.stock_quantity >= required,
                "shortage": max(Decimal("0"), required - material.stock_quantity),
                "unit_cost": material.unit_cost,
                "total_cost": round_decimal(cost, places),
            })

        return {
            "product_id": product.id,
            "product_name": product.name,
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "requested_quantity": quantity,
            "can_produce": sufficiency["sufficient"],
            "material_requirements": requirements,
            "shortages": sufficiency["insufficient_materials"],
            "cost_analysis": {
                "total_material_cost": round_decimal(total_cost, places),
                "cost_per_unit": round_decimal(total_cost / quantity, places),
            },
        }

    # ==================== SINGLE PRODUCT ====================

    @classmethod
    def calculate_batch_requirements(cls, tenant_id: int, product_id: int, quantity: Any) -> Dict[str, Any]:
        quantity = to_positive_int(quantity)
        product, recipe = cls._active_recipe(tenant_id, product_id)
        return success_response({
            **cls.requirements_for(product, recipe, quantity),
            "calculated_at": timezone.now().isoformat(),
        })

    @classmethod
    def calculate_optimal_batch_size(cls, tenant_id: int, product_id: int) -> Dict[str, Any]:
        """Standard batch sizes that current stock can cover, with a recommendation."""
        product, recipe = cls._active_recipe(tenant_id, product_id)
        capacity = ProductionService.compute_max_producible(recipe)
        max_quantity = capacity["max_quantity"]

        suggestions = []
        for size in SUGGESTED_BATCH_SIZES:
            if size > max_quantity:
                break
            costs = cls.requirements_for(product, recipe, size)["cost_analysis"]
            suggestions.append({
                "batch_size": size,
                "total_cost": costs["total_material_cost"],
                "cost_per_unit": costs["cost_per_unit"],
                "utilization_percentage": round_decimal(Decimal(size) / max_quantity * 100, 2),
            })

        if max_quantity == 0:
            recommendation = "Cannot produce. Material shortages detected."
        elif max_quantity < SMALL_CAPACITY:
            recommendation = "Very limited production capacity. Restock materials before production."
        else:
            best = min(suggestions, key=lambda s: s["cost_per_unit"])
            recommendation = f"Recommended batch size: {best['batch_size']} units for optimal cost efficiency."

        return success_response({
            "product_id": product.id,
            "product_name": product.name,
            "maximum_producible": max_quantity,
            "limiting_material": capacity["limiting_material"],
            "suggested_batches": suggestions,
            "recommendation": recommendation,
        })

    @classmethod
    def simulate_production(cls, tenant_id: int, product_id: int, quantity: Any) -> Dict[str, Any]:
        """Stock levels as they would be after producing ``quantity`` units. Writes nothing."""
        quantity = to_positive_int(quantity)
        product, recipe = cls._active_recipe(tenant_id, product_id)
        requirements = cls.requirements_for(product, recipe, quantity)

        if not requirements["can_produce"]:
            return success_response({
                "product_id": product.id,
                "product_name": product.name,
                "can_produce": False,
                "shortages": requirements["shortages"],
            }, "Cannot simulate production due to material shortages")

        changes = []
        for component in recipe.components.all():
            material = component.material
            consumed = component.deduction_for(quantity)
            after = material.stock_quantity - consumed
            changes.append({
                "material_id": material.id,
                "material_name": material.name,
                "unit": material.unit,
                "before_production": material.stock_quantity,
                "consumed": consumed,
                "after_production": after,
                "will_be_low_stock": after < material.reorder_level,
                "will_be_out_of_stock": after <= 0,
            })

        return success_response({
            "product_id": product.id,
            "product_name": product.name,
            "can_produce": True,
            "quantity_produced": quantity,
            "material_changes": changes,
            "production_cost": requirements["cost_analysis"]["total_material_cost"],
            "cost_per_unit": requirements["cost_analysis"]["cost_per_unit"],
            "simulated_at": timezone.now().isoformat(),
        })

    @classmethod
    def get_production_capacity_forecast(cls,
                                         tenant_id: int,
                                         product_id: int,
                                         days: Any,
                                         avg_daily_usage: Any = 0) -> Dict[str, Any]:
        """
        Day-by-day capacity if ``avg_daily_usage`` units are made each day.

        The forecast stops at the first day capacity reaches zero.
        """
        days = to_positive_int(days, "days")
        if days > MAX_FORECAST_DAYS:
            raise ValidationError(f"days cannot exceed {MAX_FORECAST_DAYS}", "days")
        usage = to_decimal(avg_daily_usage, "avg_daily_usage")
        if usage < 0:
            raise ValidationError("avg_daily_usage cannot be negative", "avg_daily_usage")

        product, recipe = cls._active_recipe(tenant_id, product_id)
        capacity = ProductionService.compute_max_producible(recipe)
        current = capacity["max_quantity"]

        today = timezone.localdate()
        forecast = []
        for day in range(days + 1):
            remaining = max(Decimal("0"), current - usage * day)
            forecast.append({
                "day": day,
                "date": (today + timedelta(days=day)).isoformat(),
                "production_capacity": int(remaining.to_integral_value(rounding=ROUND_FLOOR)),
                "capacity_percentage": round_decimal(remaining / current * 100, 2) if current else Decimal("0.00"),
            })
            if remaining <= 0:
                break

        days_until_depletion = None
        if usage > 0:
            days_until_depletion = int((current / usage).to_integral_value(rounding=ROUND_CEILING))

        return success_response({
            "product_id": product.id,
            "product_name": product.name,
            "current_capacity": current,
            "limiting_material": capacity["limiting_material"],
            "forecast_period_days": days,
            "average_daily_usage": usage,
            "capacity_forecast": forecast,
            "days_until_depletion": days_until_depletion,
        })

    # ==================== MULTI PRODUCT ====================

    @classmethod
    def _clean_plan(cls, plan: List[Dict[str, Any]]) -> Dict[int, int]:
        """Plan items merged per product, keeping first-seen order."""
        if not plan:
            raise ValidationError("At least one product is required", "items")

        quantities: Dict[int, int] = {}
        for item in plan:
            if not isinstance(item, dict) or item.get("product_id") in (None, ""):
                raise ValidationError("Each plan item needs a product_id and a quantity", "items")
            try:
                product_id = int(item["product_id"])
            except (TypeError, ValueError):
                raise ValidationError(f"Invalid product id: {item['product_id']}", "product_id")
            quantity = to_positive_int(item.get("quantity"))
            quantities[product_id] = quantities.get(product_id, 0) + quantity
        return quantities

    @classmethod
    def calculate_multi_product_batch(cls, tenant_id: int, plan: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Feasibility of producing several products from the same stock.

        Each product is checked on its own, then the requirements of every
        product are added up per material. A plan is feasible only when every
        product can be produced and the combined demand fits current stock.
        """
        tenant_id = cls.require_tenant(tenant_id)
        quantities = cls._clean_plan(plan)
        places = cost_places()

        products = Product.objects.for_tenant(tenant_id).in_bulk(list(quantities))
        missing = [product_id for product_id in quantities if product_id not in products]
        if missing:
            raise NotFoundError("Product", missing[0])

        details = []
        materials: Dict[int, Dict[str, Any]] = {}
        total_cost = Decimal("0")
        every_product_ok = True

        for product_id, quantity in quantities.items():
            product = products[product_id]
            recipe = RecipeService.get_active_for_product(tenant_id, product_id)
            if recipe is None:
                every_product_ok = False
                details.append({
                    "product_id": product_id,
                    "product_name": product.name,
                    "quantity": quantity,
                    "can_produce": False,
                    "error": "No active recipe",
                })
                continue

            requirements = cls.requirements_for(product, recipe, quantity)
            every_product_ok = every_product_ok and requirements["can_produce"]
            total_cost += requirements["cost_analysis"]["total_material_cost"]
            details.append({
                "product_id": product_id,
                "product_name": product.name,
                "recipe_id": recipe.id,
                "quantity": quantity,
                "can_produce": requirements["can_produce"],
                "total_cost": requirements["cost_analysis"]["total_material_cost"],
                "shortages": requirements["shortages"],
            })

            for row in requirements["material_requirements"]:
                entry = materials.setdefault(row["material_id"], {
                    "material_id": row["material_id"],
                    "material_name": row["material_name"],
                    "unit": row["unit"],
                    "current_stock": row["current_stock"],
                    "unit_cost": row["unit_cost"],
                    "total_required": Decimal("0"),
                    "used_in_products": [],
                })
                entry["total_required"] += row["total_required"]
                entry["used_in_products"].append({
                    "product_id": product_id,
                    "product_name": product.name,
                    "quantity_required": row["total_required"],
                })

        shortages = []
        for entry in materials.values():
            shortage = entry["total_required"] - entry["current_stock"]
            entry["remaining_after_production"] = entry["current_stock"] - entry["total_required"]
            entry["is_sufficient"] = shortage <= 0
            if shortage > 0:
                shortages.append({
                    "material_id": entry["material_id"],
                    "material_name": entry["material_name"],
                    "unit": entry["unit"],
                    "current_stock": entry["current_stock"],
                    "total_required": entry["total_required"],
                    "shortage": shortage,
                })

        return success_response({
            "production_plan": details,
            "total_products": len(quantities),
            "is_feasible": every_product_ok and not shortages,
            "aggregated_material_requirements": list(materials.values()),
            "material_shortages": shortages,
            "total_production_cost": round_decimal(total_cost, places),
            "calculated_at": timezone.now().isoformat(),
        })
