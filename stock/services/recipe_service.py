import logging
from typing import Dict, Any, Optional, List
from decimal import Decimal
from django.db import transaction, IntegrityError
from django.db.models import Q, Prefetch
from django.utils import timezone

from main.models import Product
from stock.models import Recipe, RecipeComponent, Material, MIN_QUANTITY, MAX_WASTE_PERCENTAGE, cost_places
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, RecipeDeletionBlockedError, ConcurrencyConflictError,
    to_decimal, round_decimal, resolve_actor,
)

logger = logging.getLogger(__name__)

def components_prefetch() -> Prefetch:
    return Prefetch(
        "components",
        queryset=RecipeComponent.objects.select_related("material").order_by("sort_order", "id"),
    )


class RecipeService(BaseService):
    model = Recipe

    UPDATABLE_FIELDS = ["name", "description", "notes", "yield_quantity", "yield_unit"]

    @classmethod
    def serialize(cls, recipe: Recipe,
                  include_components: bool = True,
                  include_cost: bool = False) -> Dict[str, Any]:
        data = {
            "id": recipe.id,
            "uuid": str(recipe.uuid),
            "tenant_id": recipe.tenant_id,
            "name": recipe.name,
            "description": recipe.description,
            "product_id": recipe.product_id,
            "product_name": recipe.product.name,
            "yield_quantity": str(recipe.yield_quantity),
            "yield_unit": recipe.yield_unit,
            "is_active": recipe.is_active,
            "notes": recipe.notes,
            "created_by_id": recipe.created_by_id,
            "created_at": recipe.created_at.isoformat(),
            "updated_at": recipe.updated_at.isoformat(),
        }

        if include_components:
            data["components"] = [
                RecipeComponentService.serialize(c) for c in recipe.components.all()
            ]
            data["component_count"] = len(data["components"])

        if include_cost:
            data.update(cls.cost_summary(recipe))

        return data

    @classmethod
    def load(cls, tenant_id: int, recipe_id: int) -> Recipe:
        """Recipe with product and components (and their materials) eagerly loaded."""
        try:
            return (
                cls.scoped(tenant_id)
                .select_related("product")
                .prefetch_related(components_prefetch())
                .get(id=recipe_id)
            )
        except (Recipe.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Recipe", recipe_id)

    @classmethod
    def list(cls,
             tenant_id: int,
             page: int = 1,
             per_page: int = 20,
             search: str = None,
             product_id: int = None,
             active_only: bool = False) -> Dict[str, Any]:
        queryset = cls.scoped(tenant_id).select_related("product").prefetch_related(components_prefetch())

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(product__name__icontains=search)
            )

        if product_id:
            queryset = queryset.filter(product_id=product_id)

        if active_only:
            queryset = queryset.filter(is_active=True)

        queryset = queryset.order_by("name", "id")

        recipes, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "recipes": [cls.serialize(r, include_cost=True) for r in recipes],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, tenant_id: int, recipe_id: int) -> Dict[str, Any]:
        recipe = cls.load(tenant_id, recipe_id)
        return success_response({"recipe": cls.serialize(recipe, include_cost=True)})

    @classmethod
    def get_active_for_product(cls, tenant_id: int, product_id: int) -> Optional[Recipe]:
        return (
            cls.scoped(tenant_id)
            .filter(product_id=product_id, is_active=True)
            .select_related("product")
            .prefetch_related(components_prefetch())
            .first()
        )

    # ==================== CRUD ====================

    @classmethod
    def _clean(cls, data: Dict[str, Any], creating: bool = False) -> Dict[str, Any]:
        cleaned = {}

        if "name" in data or creating:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("Recipe name is required", "name")
            cleaned["name"] = name

        if "yield_quantity" in data:
            yield_quantity = round_decimal(to_decimal(data["yield_quantity"], "yield_quantity"))
            if yield_quantity < MIN_QUANTITY:
                raise ValidationError(f"yield_quantity must be at least {MIN_QUANTITY}", "yield_quantity")
            cleaned["yield_quantity"] = yield_quantity

        if "yield_unit" in data:
            if data["yield_unit"] not in Recipe.YieldUnit.values:
                raise ValidationError(f"Invalid yield unit. Valid: {Recipe.YieldUnit.values}", "yield_unit")
            cleaned["yield_unit"] = data["yield_unit"]

        for field in ("description", "notes"):
            if field in data:
                cleaned[field] = (data.get(field) or "").strip()

        return cleaned

    @classmethod
    @transaction.atomic
    def create(cls,
               tenant_id: int,
               product_id: int,
               name: str,
               yield_quantity: Any = 1,
               yield_unit: str = Recipe.YieldUnit.PCS,
               description: str = "",
               notes: str = "",
               components: List[Dict[str, Any]] = None,
               is_active: bool = False,
               user_id: int = None) -> Dict[str, Any]:
        tenant_id = cls.require_tenant(tenant_id)
        user_id = resolve_actor(tenant_id, user_id)

        product = Product.objects.for_tenant(tenant_id).filter(id=product_id).first()
        if not product:
            raise NotFoundError("Product", product_id)

        cleaned = cls._clean({
            "name": name,
            "yield_quantity": yield_quantity,
            "yield_unit": yield_unit,
            "description": description,
            "notes": notes,
        }, creating=True)

        recipe = Recipe.objects.create(
            tenant_id=tenant_id,
            product=product,
            is_active=False,
            created_by_id=user_id,
            **cleaned,
        )

        for index, component in enumerate(components or []):
            component = dict(component)
            component.setdefault("sort_order", index)
            material_id = component.pop("material_id", None)
            RecipeComponentService.add(tenant_id, recipe.id, material_id, **component)

        if is_active:
            cls.activate(tenant_id, recipe.id)

        logger.info("Recipe created: %s for product %s (tenant=%s)", recipe.name, product.id, tenant_id)

        recipe = cls.load(tenant_id, recipe.id)
        return success_response({"recipe": cls.serialize(recipe, include_cost=True)}, "Recipe created")

    @classmethod
    @transaction.atomic
    def update(cls, tenant_id: int, recipe_id: int, **data) -> Dict[str, Any]:
        recipe = cls.get_or_404(tenant_id, recipe_id)

        if "is_active" in data:
            raise ValidationError("Use activate/deactivate to change the active recipe", "is_active")

        unknown = set(data) - set(cls.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {sorted(unknown)}", sorted(unknown)[0])

        cleaned = cls._clean(data)
        for field, value in cleaned.items():
            setattr(recipe, field, value)
        recipe.save(update_fields=[*cleaned.keys(), "updated_at"])

        recipe = cls.load(tenant_id, recipe.id)
        return success_response({"recipe": cls.serialize(recipe, include_cost=True)}, "Recipe updated")

    @classmethod
    @transaction.atomic
    def delete(cls, tenant_id: int, recipe_id: int) -> Dict[str, Any]:
        recipe = cls.get_or_404(tenant_id, recipe_id)

        if not recipe.can_be_deleted():
            logger.warning("Blocked deletion of active recipe %s", recipe.id)
            raise RecipeDeletionBlockedError(
                f"Recipe '{recipe.name}' is active. Deactivate it before deleting.",
                [recipe.name],
            )

        recipe.components.all().delete()
        recipe.delete()
        logger.info("Recipe deleted: %s (tenant=%s)", recipe.name, recipe.tenant_id)

        return success_response(message="Recipe deleted")

    # ==================== ACTIVATION ====================

    @classmethod
    def _lock_active_siblings(cls, tenant_id: int, recipe: Recipe) -> List[int]:
        return list(
            Recipe.objects.select_for_update()
            .filter(tenant_id=tenant_id, product_id=recipe.product_id, is_active=True)
            .exclude(id=recipe.id)
            .order_by("id")
            .values_list("id", flat=True)
        )

    @classmethod
    @transaction.atomic
    def activate(cls, tenant_id: int, recipe_id: int) -> Dict[str, Any]:
        """
        Make a recipe the active one for its product.

        Sibling recipes of the same product are deactivated first, in the
        same transaction, so at most one recipe per product is ever active.
        A concurrent activation that slips past the sibling lock is reported
        as a conflict.
        """
        tenant_id = cls.require_tenant(tenant_id)
        recipe = cls.get_or_404(tenant_id, recipe_id)

        siblings = cls._lock_active_siblings(tenant_id, recipe)
        try:
            with transaction.atomic():
                if siblings:
                    Recipe.objects.filter(id__in=siblings).update(is_active=False, updated_at=timezone.now())

                if not recipe.is_active:
                    recipe.is_active = True
                    recipe.save(update_fields=["is_active", "updated_at"])
        except IntegrityError as e:
            logger.warning(
                "Activation of recipe %s lost a race for product %s: %s", recipe.id, recipe.product_id, e
            )
            raise ConcurrencyConflictError(
                "Another recipe for this product was activated at the same time, please retry",
                {"recipe_id": recipe.id, "product_id": recipe.product_id},
            ) from e

        logger.info(
            "Recipe %s activated for product %s, deactivated %s",
            recipe.id, recipe.product_id, siblings
        )

        return success_response({
            "recipe_id": recipe.id,
            "is_active": True,
            "deactivated_recipe_ids": siblings,
        }, "Recipe activated")

    @classmethod
    @transaction.atomic
    def deactivate(cls, tenant_id: int, recipe_id: int) -> Dict[str, Any]:
        recipe = cls.get_or_404(tenant_id, recipe_id)

        if recipe.is_active:
            recipe.is_active = False
            recipe.save(update_fields=["is_active", "updated_at"])
            logger.info("Recipe %s deactivated", recipe.id)

        return success_response({"recipe_id": recipe.id, "is_active": False}, "Recipe deactivated")

    @classmethod
    @transaction.atomic
    def clone(cls,
              tenant_id: int,
              recipe_id: int,
              name: str = None,
              user_id: int = None,
              **overrides) -> Dict[str, Any]:
        """
        Copy a recipe and its components into a new, inactive recipe for the same product.

        ``overrides`` may replace yield_quantity, yield_unit, description or notes.
        """
        tenant_id = cls.require_tenant(tenant_id)
        user_id = resolve_actor(tenant_id, user_id)
        original = cls.load(tenant_id, recipe_id)

        unknown = set(overrides) - {"yield_quantity", "yield_unit", "description", "notes"}
        if unknown:
            raise ValidationError(f"Unknown fields: {sorted(unknown)}", sorted(unknown)[0])

        fields = {
            "description": original.description,
            "notes": original.notes,
            "yield_quantity": original.yield_quantity,
            "yield_unit": original.yield_unit,
        }
        fields.update(cls._clean({"name": name or f"{original.name} (Copy)", **overrides}, creating=True))

        recipe = Recipe.objects.create(
            tenant_id=tenant_id,
            product_id=original.product_id,
            is_active=False,
            created_by_id=user_id,
            **fields,
        )
        RecipeComponent.objects.bulk_create([
            RecipeComponent(
                tenant_id=tenant_id,
                recipe=recipe,
                material_id=component.material_id,
                quantity_required=component.quantity_required,
                waste_percentage=component.waste_percentage,
                notes=component.notes,
                sort_order=component.sort_order,
            )
            for component in original.components.all()
        ])

        logger.info("Recipe %s cloned from %s (tenant=%s)", recipe.id, original.id, tenant_id)

        recipe = cls.load(tenant_id, recipe.id)
        return success_response({
            "recipe": cls.serialize(recipe, include_cost=True),
            "cloned_from": original.id,
        }, "Recipe cloned")

    # ==================== COSTING ====================

    @classmethod
    def calculate_total_cost(cls, recipe: Recipe) -> Decimal:
        """Sum of effective quantity x unit cost. Expects components prefetched with materials."""
        return recipe.calculate_total_cost()

    @classmethod
    def cost_summary(cls, recipe: Recipe, places: int = None) -> Dict[str, Any]:
        places = cost_places() if places is None else places
        total_cost = cls.calculate_total_cost(recipe)
        cost_per_unit = total_cost / recipe.yield_quantity if recipe.yield_quantity > 0 else Decimal("0")
        return {
            "total_cost": round_decimal(total_cost, places),
            "cost_per_unit": round_decimal(cost_per_unit, places),
        }

    @classmethod
    def calculate_cost(cls, tenant_id: int, recipe_id: int) -> Dict[str, Any]:
        recipe = cls.load(tenant_id, recipe_id)
        return success_response({
            "recipe_id": recipe.id,
            "yield_quantity": recipe.yield_quantity,
            **cls.cost_summary(recipe),
        })

    @classmethod
    def get_cost_breakdown(cls, tenant_id: int, recipe_id: int) -> Dict[str, Any]:
        recipe = cls.load(tenant_id, recipe_id)
        total_cost = cls.calculate_total_cost(recipe)
        places = cost_places()

        breakdown = []
        for component in recipe.components.all():
            cost = component.total_cost
            breakdown.append({
                "component_id": component.id,
                "material_id": component.material_id,
                "material_name": component.material.name,
                "material_unit": component.material.unit,
                "quantity_required": component.quantity_required,
                "waste_percentage": component.waste_percentage,
                "effective_quantity": component.effective_quantity,
                "unit_cost": component.material.unit_cost,
                "total_cost": round_decimal(cost, places),
                "cost_per_recipe_unit": round_decimal(component.cost_per_recipe_unit, places),
                "cost_share_percentage": (
                    round_decimal(cost / total_cost * 100, 2) if total_cost > 0 else Decimal("0.00")
                ),
            })

        return success_response({
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "yield_quantity": recipe.yield_quantity,
            "yield_unit": recipe.yield_unit,
            "total_cost": round_decimal(total_cost, places),
            "cost_per_unit": cls.cost_summary(recipe)["cost_per_unit"],
            "components": breakdown,
        })


class RecipeComponentService(BaseService):
    model = RecipeComponent

    UPDATABLE_FIELDS = ["quantity_required", "waste_percentage", "notes", "sort_order"]

    @classmethod
    def serialize(cls, component: RecipeComponent) -> Dict[str, Any]:
        return {
            "id": component.id,
            "uuid": str(component.uuid),
            "recipe_id": component.recipe_id,
            "material_id": component.material_id,
            "material_name": component.material.name,
            "material_unit": component.material.unit,
            "quantity_required": str(component.quantity_required),
            "waste_percentage": str(component.waste_percentage),
            "effective_quantity": str(component.effective_quantity),
            "waste_amount": str(component.waste_amount),
            "total_cost": str(round_decimal(component.total_cost, cost_places())),
            "display_name": component.display_name,
            "notes": component.notes,
            "sort_order": component.sort_order,
        }

    @classmethod
    def _clean(cls, data: Dict[str, Any], creating: bool = False) -> Dict[str, Any]:
        cleaned = {}

        if "quantity_required" in data or creating:
            quantity = to_decimal(data.get("quantity_required"), "quantity_required")
            if quantity < MIN_QUANTITY:
                raise ValidationError(
                    f"quantity_required must be at least {MIN_QUANTITY}", "quantity_required"
                )
            cleaned["quantity_required"] = round_decimal(quantity)

        if "waste_percentage" in data:
            waste = to_decimal(data["waste_percentage"], "waste_percentage")
            if waste < 0 or waste > MAX_WASTE_PERCENTAGE:
                raise ValidationError(
                    f"waste_percentage must be between 0 and {MAX_WASTE_PERCENTAGE}", "waste_percentage"
                )
            cleaned["waste_percentage"] = round_decimal(waste, 2)

        if "notes" in data:
            cleaned["notes"] = (data.get("notes") or "").strip()

        if data.get("sort_order") is not None:
            sort_order = data["sort_order"]
            if not isinstance(sort_order, int) or sort_order < 0:
                raise ValidationError("sort_order must be a non-negative integer", "sort_order")
            cleaned["sort_order"] = sort_order

        return cleaned

    @classmethod
    @transaction.atomic
    def add(cls,
            tenant_id: int,
            recipe_id: int,
            material_id: int,
            quantity_required: Any = None,
            waste_percentage: Any = 0,
            notes: str = "",
            sort_order: int = None) -> Dict[str, Any]:
        tenant_id = cls.require_tenant(tenant_id)
        recipe = RecipeService.get_or_404(tenant_id, recipe_id)

        if material_id in (None, ""):
            raise ValidationError("material_id is required", "material_id")
        material = Material.objects.for_tenant(tenant_id).filter(id=material_id).first()
        if not material:
            raise NotFoundError("Material", material_id)

        if recipe.components.filter(material=material).exists():
            raise ValidationError(
                f"{material.name} is already part of recipe '{recipe.name}'", "material_id"
            )

        cleaned = cls._clean({
            "quantity_required": quantity_required,
            "waste_percentage": waste_percentage,
            "notes": notes,
            "sort_order": sort_order,
        }, creating=True)
        if "sort_order" not in cleaned:
            cleaned["sort_order"] = recipe.components.count()

        component = RecipeComponent.objects.create(
            tenant_id=tenant_id,
            recipe=recipe,
            material=material,
            **cleaned,
        )

        return success_response({"component": cls.serialize(component)}, "Component added")

    @classmethod
    @transaction.atomic
    def update(cls, tenant_id: int, component_id: int, **data) -> Dict[str, Any]:
        component = cls._get_component(tenant_id, component_id)

        unknown = set(data) - set(cls.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {sorted(unknown)}", sorted(unknown)[0])

        cleaned = cls._clean(data)
        for field, value in cleaned.items():
            setattr(component, field, value)
        component.save(update_fields=[*cleaned.keys(), "updated_at"])

        return success_response({"component": cls.serialize(component)}, "Component updated")

    @classmethod
    @transaction.atomic
    def remove(cls, tenant_id: int, component_id: int) -> Dict[str, Any]:
        component = cls._get_component(tenant_id, component_id)
        component.delete()
        return success_response(message="Component removed")

    @classmethod
    def _get_component(cls, tenant_id: int, component_id: int) -> RecipeComponent:
        tenant_id = cls.require_tenant(tenant_id)
        component = (
            RecipeComponent.objects.select_related("material", "recipe")
            .filter(tenant_id=tenant_id, recipe__is_deleted=False, id=component_id)
            .first()
        )
        if not component:
            raise NotFoundError("Recipe component", component_id)
        return component
