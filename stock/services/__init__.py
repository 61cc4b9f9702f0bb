"""
Stock Services - recipe costing, production feasibility and the material ledger

Usage:
    from stock.services import MaterialService, ProductionService

    # Restock a material
    MaterialService.adjust_stock(tenant_id=1, material_id=3, transaction_type="restock",
                                 quantity=500, reason="purchase")

    # How many units can be made, and make them
    ProductionService.calculate_max_producible(tenant_id=1, recipe_id=7)
    ProductionService.deduct_materials_for_production(tenant_id=1, recipe_id=7, quantity=10)

    # Will two products fit in the same stock
    BatchProductionService.calculate_multi_product_batch(tenant_id=1, plan=[
        {"product_id": 4, "quantity": 6}, {"product_id": 5, "quantity": 3},
    ])
"""

# Base utilities
from stock.services.base_service import (
    ServiceError,
    ValidationError,
    NotFoundError,
    BusinessRuleError,
    InsufficientStockError,
    InsufficientMaterialsError,
    ConcurrencyConflictError,
    RecipeDeletionBlockedError,
    success_response,
    paginate_queryset,
    to_decimal,
    to_positive_int,
    round_decimal,
    get_date_range,
    BaseService,
)

# Ledger
from .material_service import MaterialService
from .transaction_service import InventoryTransactionService

# Recipes & Production
from .recipe_service import RecipeService, RecipeComponentService
from .production_service import ProductionService
from .calculation_service import InventoryCalculationService
from .batch_service import BatchProductionService


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "BusinessRuleError",
    "InsufficientStockError",
    "InsufficientMaterialsError",
    "ConcurrencyConflictError",
    "RecipeDeletionBlockedError",
    "success_response",
    "paginate_queryset",
    "to_decimal",
    "to_positive_int",
    "round_decimal",
    "get_date_range",
    "BaseService",

    # Ledger
    "MaterialService",
    "InventoryTransactionService",

    # Recipes & Production
    "RecipeService",
    "RecipeComponentService",
    "ProductionService",
    "InventoryCalculationService",
    "BatchProductionService",
]
