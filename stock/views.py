import json
import logging
from datetime import datetime

from django.http import JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from stock.models import StockReference
from stock.services import (
    ValidationError, NotFoundError, BusinessRuleError, InsufficientStockError,
    InsufficientMaterialsError, ConcurrencyConflictError, RecipeDeletionBlockedError,
    MaterialService, InventoryTransactionService,
    RecipeService, RecipeComponentService,
    ProductionService, InventoryCalculationService, BatchProductionService,
)

logger = logging.getLogger(__name__)


def error_response(message: str, code: str = "error", status: int = 400, details: dict = None):
    data = {"success": False, "error": {"code": code, "message": message}}
    if details:
        data["error"]["details"] = details
    return JsonResponse(data, status=status)


def handle_service_error(e: Exception):
    if isinstance(e, ValidationError):
        return error_response(str(e), "validation_error", 400, {"field": e.field, **e.details})
    elif isinstance(e, NotFoundError):
        return error_response(str(e), "not_found", 404)
    elif isinstance(e, InsufficientStockError):
        return error_response(str(e), "insufficient_stock", 400, e.details)
    elif isinstance(e, InsufficientMaterialsError):
        return error_response(str(e), "insufficient_materials", 400, e.details)
    elif isinstance(e, ConcurrencyConflictError):
        return error_response(str(e), "concurrency_conflict", 409, e.details)
    elif isinstance(e, RecipeDeletionBlockedError):
        return error_response(str(e), "deletion_blocked", 409, {"blocked_by": e.blockers})
    elif isinstance(e, BusinessRuleError):
        return error_response(str(e), "business_rule", 400)
    elif isinstance(e, KeyError):
        return error_response(f"Missing field: {e.args[0]}", "validation_error", 400, {"field": e.args[0]})
    else:
        logger.exception("Unhandled error in stock API")
        return error_response(str(e), "server_error", 500)


class BaseStockView(View):
    @method_decorator(csrf_exempt)
    def dispatch(self, request, *args, **kwargs):
        return super().dispatch(request, *args, **kwargs)

    def get_json_body(self, request):
        try:
            return json.loads(request.body) if request.body else {}
        except json.JSONDecodeError:
            raise ValidationError("Request body must be valid JSON", "body")

    def get_tenant_id(self, request):
        return request.headers.get("X-Tenant-ID") or request.GET.get("tenant_id")

    def get_user_id(self, request, data: dict = None):
        return request.headers.get("X-User-ID") or (data or {}).get("user_id")

    def get_int(self, request, name: str, default: int = None):
        value = request.GET.get(name)
        if value in (None, ""):
            return default
        try:
            return int(value)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", name)

    def get_date(self, request, name: str):
        value = request.GET.get(name)
        if not value:
            return None
        try:
            return datetime.fromisoformat(value).date()
        except ValueError:
            raise ValidationError(f"{name} must be an ISO date", name)

    def success(self, data: dict, status: int = 200):
        return JsonResponse({"success": True, **data}, status=status)


# ==================== MATERIALS ====================

class MaterialListView(BaseStockView):
    """GET/POST /api/stock/materials/"""

    def get(self, request):
        try:
            result = MaterialService.list(
                tenant_id=self.get_tenant_id(request),
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 20),
                search=request.GET.get("search"),
                category=request.GET.get("category"),
                unit=request.GET.get("unit"),
                status=request.GET.get("status"),
                sort_by=request.GET.get("sort_by", "name"),
                sort_dir=request.GET.get("sort_dir", "asc"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            user_id = self.get_user_id(request, data)
            data.pop("user_id", None)
            result = MaterialService.create(self.get_tenant_id(request), user_id=user_id, **data)
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class MaterialBulkCreateView(BaseStockView):
    """POST /api/stock/materials/bulk/"""

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = MaterialService.bulk_create(
                self.get_tenant_id(request),
                items=data["materials"],
                user_id=self.get_user_id(request, data),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class MaterialDetailView(BaseStockView):
    """GET/PUT/DELETE /api/stock/materials/<id>/"""

    def get(self, request, material_id):
        try:
            result = MaterialService.get(self.get_tenant_id(request), material_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, material_id):
        try:
            data = self.get_json_body(request)
            result = MaterialService.update(self.get_tenant_id(request), material_id, **data)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, material_id):
        try:
            result = MaterialService.delete(self.get_tenant_id(request), material_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class MaterialAdjustStockView(BaseStockView):
    """POST /api/stock/materials/<id>/adjust/"""

    def post(self, request, material_id):
        try:
            data = self.get_json_body(request)
            result = MaterialService.adjust_stock(
                tenant_id=self.get_tenant_id(request),
                material_id=material_id,
                transaction_type=data["transaction_type"],
                quantity=data["quantity"],
                reason=data["reason"],
                notes=data.get("notes", ""),
                user_id=self.get_user_id(request, data),
                reference=data.get("reference"),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class MaterialLowStockView(BaseStockView):
    """GET /api/stock/materials/low-stock/"""

    def get(self, request):
        try:
            return self.success(MaterialService.get_low_stock(self.get_tenant_id(request)))
        except Exception as e:
            return handle_service_error(e)


class MaterialOutOfStockView(BaseStockView):
    """GET /api/stock/materials/out-of-stock/"""

    def get(self, request):
        try:
            return self.success(MaterialService.get_out_of_stock(self.get_tenant_id(request)))
        except Exception as e:
            return handle_service_error(e)


class MaterialCategoriesView(BaseStockView):
    """GET /api/stock/materials/categories/"""

    def get(self, request):
        try:
            return self.success(MaterialService.get_categories(self.get_tenant_id(request)))
        except Exception as e:
            return handle_service_error(e)


class MaterialSummaryView(BaseStockView):
    """GET /api/stock/materials/<id>/summary/"""

    def get(self, request, material_id):
        try:
            result = InventoryTransactionService.get_summary_for_material(
                self.get_tenant_id(request),
                material_id,
                date_from=self.get_date(request, "date_from"),
                date_to=self.get_date(request, "date_to"),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== TRANSACTIONS ====================

class TransactionListView(BaseStockView):
    """GET /api/stock/transactions/"""

    def get(self, request):
        try:
            reference = None
            if request.GET.get("reference_type"):
                reference = MaterialService.coerce_reference({
                    "type": request.GET["reference_type"],
                    "id": self.get_int(request, "reference_id"),
                })

            result = InventoryTransactionService.list(
                tenant_id=self.get_tenant_id(request),
                material_id=self.get_int(request, "material_id"),
                transaction_type=request.GET.get("type"),
                reason=request.GET.get("reason"),
                date_from=self.get_date(request, "date_from"),
                date_to=self.get_date(request, "date_to"),
                period=request.GET.get("period"),
                reference=reference,
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class OrderTransactionsView(BaseStockView):
    """GET /api/stock/transactions/order/<id>/"""

    def get(self, request, order_id):
        try:
            result = InventoryTransactionService.get_for_reference(
                self.get_tenant_id(request), StockReference.order(order_id)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== RECIPES ====================

class RecipeListView(BaseStockView):
    """GET/POST /api/stock/recipes/"""

    def get(self, request):
        try:
            result = RecipeService.list(
                tenant_id=self.get_tenant_id(request),
                page=self.get_int(request, "page", 1),
                per_page=self.get_int(request, "per_page", 20),
                search=request.GET.get("search"),
                product_id=self.get_int(request, "product_id"),
                active_only=request.GET.get("active_only", "false").lower() == "true",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = RecipeService.create(
                tenant_id=self.get_tenant_id(request),
                product_id=data["product_id"],
                name=data["name"],
                yield_quantity=data.get("yield_quantity", 1),
                yield_unit=data.get("yield_unit", "pcs"),
                description=data.get("description", ""),
                notes=data.get("notes", ""),
                components=data.get("components"),
                is_active=bool(data.get("is_active", False)),
                user_id=self.get_user_id(request, data),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class RecipeDetailView(BaseStockView):
    """GET/PUT/DELETE /api/stock/recipes/<id>/"""

    def get(self, request, recipe_id):
        try:
            return self.success(RecipeService.get(self.get_tenant_id(request), recipe_id))
        except Exception as e:
            return handle_service_error(e)

    def put(self, request, recipe_id):
        try:
            data = self.get_json_body(request)
            result = RecipeService.update(self.get_tenant_id(request), recipe_id, **data)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, recipe_id):
        try:
            return self.success(RecipeService.delete(self.get_tenant_id(request), recipe_id))
        except Exception as e:
            return handle_service_error(e)


class RecipeActivateView(BaseStockView):
    """POST /api/stock/recipes/<id>/activate/"""

    def post(self, request, recipe_id):
        try:
            return self.success(RecipeService.activate(self.get_tenant_id(request), recipe_id))
        except Exception as e:
            return handle_service_error(e)


class RecipeDeactivateView(BaseStockView):
    """POST /api/stock/recipes/<id>/deactivate/"""

    def post(self, request, recipe_id):
        try:
            return self.success(RecipeService.deactivate(self.get_tenant_id(request), recipe_id))
        except Exception as e:
            return handle_service_error(e)


class RecipeCloneView(BaseStockView):
    """POST /api/stock/recipes/<id>/clone/"""

    CLONE_FIELDS = ("yield_quantity", "yield_unit", "description", "notes")

    def post(self, request, recipe_id):
        try:
            data = self.get_json_body(request)
            result = RecipeService.clone(
                self.get_tenant_id(request),
                recipe_id,
                name=data.get("name"),
                user_id=self.get_user_id(request, data),
                **{field: data[field] for field in self.CLONE_FIELDS if field in data},
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class RecipeCostView(BaseStockView):
    """GET /api/stock/recipes/<id>/cost/"""

    def get(self, request, recipe_id):
        try:
            return self.success(RecipeService.calculate_cost(self.get_tenant_id(request), recipe_id))
        except Exception as e:
            return handle_service_error(e)


class RecipeCostBreakdownView(BaseStockView):
    """GET /api/stock/recipes/<id>/cost-breakdown/"""

    def get(self, request, recipe_id):
        try:
            return self.success(RecipeService.get_cost_breakdown(self.get_tenant_id(request), recipe_id))
        except Exception as e:
            return handle_service_error(e)


class RecipeComponentListView(BaseStockView):
    """POST /api/stock/recipes/<id>/components/"""

    def post(self, request, recipe_id):
        try:
            data = self.get_json_body(request)
            result = RecipeComponentService.add(
                tenant_id=self.get_tenant_id(request),
                recipe_id=recipe_id,
                material_id=data["material_id"],
                quantity_required=data["quantity_required"],
                waste_percentage=data.get("waste_percentage", 0),
                notes=data.get("notes", ""),
                sort_order=data.get("sort_order"),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class RecipeComponentDetailView(BaseStockView):
    """PUT/DELETE /api/stock/components/<id>/"""

    def put(self, request, component_id):
        try:
            data = self.get_json_body(request)
            result = RecipeComponentService.update(self.get_tenant_id(request), component_id, **data)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, component_id):
        try:
            return self.success(RecipeComponentService.remove(self.get_tenant_id(request), component_id))
        except Exception as e:
            return handle_service_error(e)


# ==================== PRODUCTION ====================

class RecipeMaxProducibleView(BaseStockView):
    """GET /api/stock/recipes/<id>/max-producible/"""

    def get(self, request, recipe_id):
        try:
            result = ProductionService.calculate_max_producible(self.get_tenant_id(request), recipe_id)
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class RecipeSufficiencyView(BaseStockView):
    """GET /api/stock/recipes/<id>/sufficiency/?quantity=N"""

    def get(self, request, recipe_id):
        try:
            result = ProductionService.check_sufficiency(
                self.get_tenant_id(request), recipe_id, request.GET.get("quantity")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class RecipeProduceView(BaseStockView):
    """POST /api/stock/recipes/<id>/produce/"""

    def post(self, request, recipe_id):
        try:
            data = self.get_json_body(request)
            result = ProductionService.deduct_materials_for_production(
                tenant_id=self.get_tenant_id(request),
                recipe_id=recipe_id,
                quantity=data["quantity"],
                user_id=self.get_user_id(request, data),
                reference=data.get("reference"),
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


# ==================== PRODUCT AVAILABILITY ====================

class ProductAvailabilityListView(BaseStockView):
    """GET /api/stock/products/availability/?ids=1,2,3"""

    def get(self, request):
        try:
            ids = request.GET.get("ids")
            product_ids = None
            if ids:
                try:
                    product_ids = [int(i) for i in ids.split(",") if i.strip()]
                except ValueError:
                    raise ValidationError("ids must be a comma separated list of integers", "ids")
            result = InventoryCalculationService.bulk_calculate_availability(
                self.get_tenant_id(request), product_ids
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductAvailabilityView(BaseStockView):
    """GET /api/stock/products/<id>/availability/"""

    def get(self, request, product_id):
        try:
            result = InventoryCalculationService.calculate_available_quantity(
                self.get_tenant_id(request), product_id
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductFeasibilityView(BaseStockView):
    """GET /api/stock/products/<id>/feasibility/?quantity=N"""

    def get(self, request, product_id):
        try:
            result = InventoryCalculationService.check_production_feasibility(
                self.get_tenant_id(request), product_id, request.GET.get("quantity")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductRequirementsView(BaseStockView):
    """GET /api/stock/products/<id>/requirements/?quantity=N"""

    def get(self, request, product_id):
        try:
            result = InventoryCalculationService.get_material_requirements(
                self.get_tenant_id(request), product_id, request.GET.get("quantity")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductCostEstimateView(BaseStockView):
    """GET /api/stock/products/<id>/cost-estimate/?quantity=N"""

    def get(self, request, product_id):
        try:
            result = InventoryCalculationService.estimate_production_cost(
                self.get_tenant_id(request), product_id, request.GET.get("quantity")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class LowStockInActiveRecipesView(BaseStockView):
    """GET /api/stock/alerts/low-stock-in-recipes/"""

    def get(self, request):
        try:
            result = InventoryCalculationService.get_low_stock_materials_in_active_recipes(
                self.get_tenant_id(request)
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== BATCH PLANNING ====================

class ProductBatchRequirementsView(BaseStockView):
    """GET /api/stock/products/<id>/batch-requirements/?quantity=N"""

    def get(self, request, product_id):
        try:
            result = BatchProductionService.calculate_batch_requirements(
                self.get_tenant_id(request), product_id, request.GET.get("quantity")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductOptimalBatchView(BaseStockView):
    """GET /api/stock/products/<id>/optimal-batch/"""

    def get(self, request, product_id):
        try:
            result = BatchProductionService.calculate_optimal_batch_size(
                self.get_tenant_id(request), product_id
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductSimulateView(BaseStockView):
    """GET /api/stock/products/<id>/simulate/?quantity=N"""

    def get(self, request, product_id):
        try:
            result = BatchProductionService.simulate_production(
                self.get_tenant_id(request), product_id, request.GET.get("quantity")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class ProductCapacityForecastView(BaseStockView):
    """GET /api/stock/products/<id>/capacity-forecast/?days=30&avg_daily_usage=2"""

    def get(self, request, product_id):
        try:
            result = BatchProductionService.get_production_capacity_forecast(
                self.get_tenant_id(request),
                product_id,
                request.GET.get("days"),
                request.GET.get("avg_daily_usage", 0),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class BatchPlanView(BaseStockView):
    """POST /api/stock/batch/plan/ {"items": [{"product_id": 1, "quantity": 5}, ...]}"""

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = BatchProductionService.calculate_multi_product_batch(
                self.get_tenant_id(request), data.get("items")
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)
