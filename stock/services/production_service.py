"""
Production feasibility and execution for recipes.

Feasibility answers "how many units can be made right now" and "is there
enough for N units". Execution deducts every component's effective quantity
for N units as one unit of work: either every material is deducted and
logged, or nothing changes.
"""
import logging
from typing import Dict, Any, List, Optional

from django.db import transaction, OperationalError

from stock.models import Recipe, RecipeComponent, InventoryTransaction, StockReference
from stock.services.base_service import (
    BaseService, success_response,
    NotFoundError, BusinessRuleError, InsufficientMaterialsError, ConcurrencyConflictError,
    to_positive_int, resolve_actor,
)
from .material_service import MaterialService
from .recipe_service import RecipeService
from .transaction_service import InventoryTransactionService

logger = logging.getLogger(__name__)

EMPTY_RECIPE_MESSAGE = "No materials defined in recipe"


class ProductionService(BaseService):
    model = Recipe

    # ==================== FEASIBILITY ====================

    @classmethod
    def availability_row(cls, component: RecipeComponent) -> Dict[str, Any]:
        effective = component.effective_quantity
        stock = component.material.stock_quantity
        return {
            "component_id": component.id,
            "material_id": component.material_id,
            "material_name": component.material.name,
            "material_unit": component.material.unit,
            "required_quantity": component.quantity_required,
            "waste_percentage": component.waste_percentage,
            "effective_quantity": effective,
            "available_stock": stock,
            "sufficient": stock >= effective,
            "max_producible": component.max_producible,
        }

    @classmethod
    def compute_max_producible(cls, recipe: Recipe) -> Dict[str, Any]:
        """
        Largest whole number of units every component can supply.

        Components with a zero effective quantity do not limit production.
        The first component (in recipe order) holding the minimum is reported
        as the limiting material.
        """
        availability = []
        max_quantity = None
        limiting = None

        for component in recipe.components.all():
            row = cls.availability_row(component)
            availability.append(row)

            if row["effective_quantity"] <= 0:
                continue

            if max_quantity is None or row["max_producible"] < max_quantity:
                max_quantity = row["max_producible"]
                limiting = {
                    "material_id": row["material_id"],
                    "material_name": row["material_name"],
                    "required_per_unit": row["effective_quantity"],
                    "available_stock": row["available_stock"],
                    "max_units": row["max_producible"],
                }

        if not availability:
            message = EMPTY_RECIPE_MESSAGE
        elif max_quantity is None:
            message = "No component limits production"
        elif max_quantity > 0:
            message = f"Can produce {max_quantity} unit(s)"
        else:
            message = f"Cannot produce: insufficient {limiting['material_name']}"

        max_quantity = max_quantity or 0

        return {
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "max_quantity": max_quantity,
            "can_produce": max_quantity > 0,
            "limiting_material": limiting,
            "all_materials_availability": availability,
            "message": message,
        }

    @classmethod
    def compute_sufficiency(cls, recipe: Recipe, quantity: int) -> Dict[str, Any]:
        """Check every component for ``quantity`` units and list all shortfalls."""
        components = list(recipe.components.all())
        insufficient = []

        for component in components:
            required = component.required_for(quantity)
            available = component.material.stock_quantity
            if available < required:
                insufficient.append({
                    "material_id": component.material_id,
                    "material_name": component.material.name,
                    "material_unit": component.material.unit,
                    "required_quantity": required,
                    "available_quantity": available,
                    "shortage": required - available,
                })

        sufficient = bool(components) and not insufficient
        result = {
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "requested_quantity": quantity,
            "sufficient": sufficient,
            "can_produce": sufficient,
            "insufficient_materials": insufficient,
        }
        if not components:
            result["message"] = EMPTY_RECIPE_MESSAGE
        return result

    @classmethod
    def calculate_max_producible(cls, tenant_id: int, recipe_id: int) -> Dict[str, Any]:
        recipe = RecipeService.load(tenant_id, recipe_id)
        return success_response(cls.compute_max_producible(recipe))

    @classmethod
    def check_sufficiency(cls, tenant_id: int, recipe_id: int, quantity: Any) -> Dict[str, Any]:
        quantity = to_positive_int(quantity)
        recipe = RecipeService.load(tenant_id, recipe_id)
        return success_response(cls.compute_sufficiency(recipe, quantity))

    # ==================== EXECUTION ====================

    @classmethod
    def produce(cls,
                recipe: Recipe,
                quantity: int,
                user_id: int = None,
                reference: StockReference = None) -> List[InventoryTransaction]:
        """
        Check and deduct materials for ``quantity`` units of ``recipe``.

        Must run inside ``transaction.atomic``. Materials are locked before the
        sufficiency check so that the check and the deductions see the same stock.
        """
        components = list(recipe.components.all())
        if not components:
            raise BusinessRuleError(
                f"Recipe '{recipe.name}' has no materials to deduct", "empty_recipe"
            )

        locked = MaterialService.lock(recipe.tenant_id, [c.material_id for c in components])
        for component in components:
            material = locked.get(component.material_id)
            if material is None:
                raise NotFoundError("Material", component.material_id)
            component.material = material

        sufficiency = cls.compute_sufficiency(recipe, quantity)
        if not sufficiency["sufficient"]:
            logger.warning(
                "Production of %s x recipe %s rejected: short on %s",
                quantity, recipe.id,
                [s["material_name"] for s in sufficiency["insufficient_materials"]],
            )
            raise InsufficientMaterialsError(
                recipe.name, quantity, sufficiency["insufficient_materials"]
            )

        notes = f"Production deduction for recipe: {recipe.name} (Qty: {quantity})"
        transactions = []
        for component in components:
            transactions.append(MaterialService.apply_change(
                component.material,
                -component.deduction_for(quantity),
                InventoryTransaction.TransactionType.DEDUCTION,
                InventoryTransaction.Reason.PRODUCTION,
                notes=notes,
                user_id=user_id,
                reference=reference,
            ))
        return transactions

    @classmethod
    def deduct_materials_for_production(cls,
                                        tenant_id: int,
                                        recipe_id: int,
                                        quantity: Any,
                                        user_id: int = None,
                                        reference: Optional[StockReference] = None) -> Dict[str, Any]:
        tenant_id = cls.require_tenant(tenant_id)
        quantity = to_positive_int(quantity)
        reference = MaterialService.coerce_reference(reference)

        try:
            with transaction.atomic():
                user_id = resolve_actor(tenant_id, user_id)
                recipe = RecipeService.load(tenant_id, recipe_id)
                transactions = cls.produce(recipe, quantity, user_id, reference)
        except OperationalError as e:
            logger.error("Production of recipe %s aborted by a storage conflict: %s", recipe_id, e)
            raise ConcurrencyConflictError(details={"recipe_id": recipe_id}) from e

        logger.info(
            "Produced %s x %s (recipe=%s, tenant=%s, reference=%s)",
            quantity, recipe.name, recipe.id, tenant_id, reference.as_dict()
        )

        return success_response({
            "recipe_id": recipe.id,
            "produced_quantity": quantity,
            "transactions": [InventoryTransactionService.serialize(t) for t in transactions],
        }, f"Produced {quantity} x {recipe.name}")
