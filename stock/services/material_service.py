"""
Material ledger: raw-material records and every change to their stock.
"""
import logging
from typing import Dict, Any, List, Optional
from decimal import Decimal

from django.db import transaction, OperationalError
from django.db.models import Q, F
from django.utils import timezone

from stock.models import Material, InventoryTransaction, StockReference, critical_ratio, cost_places
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, InsufficientStockError,
    ConcurrencyConflictError, RecipeDeletionBlockedError,
    to_decimal, round_decimal, resolve_actor,
)

logger = logging.getLogger(__name__)


class MaterialService(BaseService):
    model = Material

    UPDATABLE_FIELDS = ["name", "sku", "category", "unit", "description", "reorder_level", "unit_cost"]
    SORTABLE_FIELDS = ["name", "sku", "category", "stock_quantity", "unit_cost", "created_at"]

    @classmethod
    def serialize(cls, material: Material) -> Dict[str, Any]:
        return {
            "id": material.id,
            "uuid": str(material.uuid),
            "tenant_id": material.tenant_id,
            "name": material.name,
            "sku": material.sku,
            "category": material.category,
            "unit": material.unit,
            "unit_display": material.get_unit_display(),
            "description": material.description,
            "stock_quantity": str(material.stock_quantity),
            "reorder_level": str(material.reorder_level),
            "unit_cost": str(material.unit_cost),
            "total_value": str(round_decimal(material.total_value, cost_places())),
            "is_low_stock": material.is_low_stock,
            "stock_status": material.stock_status,
            "created_at": material.created_at.isoformat(),
            "updated_at": material.updated_at.isoformat(),
        }

    # ==================== QUERIES ====================

    @classmethod
    def list(cls,
             tenant_id: int,
             page: int = 1,
             per_page: int = 20,
             search: str = None,
             category: str = None,
             unit: str = None,
             status: str = None,
             sort_by: str = "name",
             sort_dir: str = "asc") -> Dict[str, Any]:
        queryset = cls.scoped(tenant_id)

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(sku__icontains=search) |
                Q(category__icontains=search)
            )

        if category:
            queryset = queryset.filter(category=category)

        if unit:
            queryset = queryset.filter(unit=unit)

        if status:
            queryset = cls._filter_by_status(queryset, status)

        if sort_by not in cls.SORTABLE_FIELDS:
            raise ValidationError(f"Cannot sort by {sort_by}. Valid: {cls.SORTABLE_FIELDS}", "sort_by")
        queryset = queryset.order_by(sort_by if sort_dir != "desc" else f"-{sort_by}", "id")

        materials, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "materials": [cls.serialize(m) for m in materials],
            "pagination": pagination,
        })

    @classmethod
    def _filter_by_status(cls, queryset, status: str):
        if status == "out_of_stock":
            return queryset.filter(stock_quantity__lte=0)
        if status == "low_stock":
            return queryset.filter(stock_quantity__gt=0, stock_quantity__lt=F("reorder_level"))
        if status == "critical":
            return queryset.filter(
                stock_quantity__gt=0,
                reorder_level__gt=0,
                stock_quantity__lte=F("reorder_level") * critical_ratio(),
            )
        if status == "normal":
            return queryset.filter(stock_quantity__gt=0, stock_quantity__gte=F("reorder_level"))
        raise ValidationError(
            "Invalid status. Valid: low_stock, critical, out_of_stock, normal", "status"
        )

    @classmethod
    def get(cls, tenant_id: int, material_id: int) -> Dict[str, Any]:
        material = cls.get_or_404(tenant_id, material_id)
        data = cls.serialize(material)
        data["active_recipes"] = [
            {"id": r.id, "name": r.name} for r in material.active_recipes()
        ]
        data["required_by_active_recipes"] = str(material.total_required_by_active_recipes())
        data["can_be_deleted"] = not data["active_recipes"]
        return success_response({"material": data})

    @classmethod
    def get_low_stock(cls, tenant_id: int) -> Dict[str, Any]:
        materials = cls.scoped(tenant_id).filter(
            stock_quantity__lt=F("reorder_level")
        ).order_by("stock_quantity", "name")
        return success_response({
            "materials": [cls.serialize(m) for m in materials],
            "count": len(materials),
        })

    @classmethod
    def get_out_of_stock(cls, tenant_id: int) -> Dict[str, Any]:
        materials = cls.scoped(tenant_id).filter(stock_quantity__lte=0).order_by("name")
        return success_response({
            "materials": [cls.serialize(m) for m in materials],
            "count": len(materials),
        })

    @classmethod
    def get_categories(cls, tenant_id: int) -> Dict[str, Any]:
        categories = (
            cls.scoped(tenant_id)
            .exclude(category="")
            .order_by("category")
            .values_list("category", flat=True)
            .distinct()
        )
        return success_response({"categories": list(categories)})

    # ==================== CRUD ====================

    @classmethod
    def _clean(cls, tenant_id: int, data: Dict[str, Any], instance: Material = None) -> Dict[str, Any]:
        cleaned = {}

        if "name" in data or instance is None:
            name = (data.get("name") or "").strip()
            if not name:
                raise ValidationError("Material name is required", "name")
            cleaned["name"] = name

        if "sku" in data:
            sku = (data.get("sku") or "").strip()
            if sku:
                duplicates = cls.scoped(tenant_id).filter(sku=sku)
                if instance is not None:
                    duplicates = duplicates.exclude(id=instance.id)
                if duplicates.exists():
                    raise ValidationError(f"SKU '{sku}' is already used by another material", "sku")
            cleaned["sku"] = sku

        if "unit" in data or instance is None:
            unit = data.get("unit")
            if unit not in Material.Unit.values:
                raise ValidationError(f"Invalid unit. Valid: {Material.Unit.values}", "unit")
            cleaned["unit"] = unit

        for field in ("category", "description"):
            if field in data:
                cleaned[field] = (data.get(field) or "").strip()

        for field in ("reorder_level", "unit_cost"):
            if field in data:
                value = round_decimal(to_decimal(data[field], field))
                if value < 0:
                    raise ValidationError(f"{field} cannot be negative", field)
                cleaned[field] = value

        return cleaned

    @classmethod
    @transaction.atomic
    def create(cls, tenant_id: int, user_id: int = None, **data) -> Dict[str, Any]:
        tenant_id = cls.require_tenant(tenant_id)
        user_id = resolve_actor(tenant_id, user_id)
        cleaned = cls._clean(tenant_id, data)

        opening_stock = round_decimal(to_decimal(data.get("stock_quantity", 0), "stock_quantity"))
        if opening_stock < 0:
            raise ValidationError("stock_quantity cannot be negative", "stock_quantity")

        material = Material.objects.create(tenant_id=tenant_id, stock_quantity=0, **cleaned)

        if opening_stock > 0:
            cls.apply_change(
                material,
                opening_stock,
                InventoryTransaction.TransactionType.RESTOCK,
                InventoryTransaction.Reason.PURCHASE,
                notes="Opening balance",
                user_id=user_id,
            )

        logger.info("Material created: %s (tenant=%s, stock=%s)", material.name, tenant_id, opening_stock)

        return success_response({"material": cls.serialize(material)}, "Material created")

    @classmethod
    @transaction.atomic
    def bulk_create(cls, tenant_id: int, items: List[Dict[str, Any]], user_id: int = None) -> Dict[str, Any]:
        tenant_id = cls.require_tenant(tenant_id)
        if not items:
            raise ValidationError("At least one material is required", "items")

        errors = []
        seen_skus = set()
        for index, item in enumerate(items):
            sku = (item.get("sku") or "").strip()
            if sku and sku in seen_skus:
                errors.append({"index": index, "field": "sku", "message": f"Duplicate SKU '{sku}' in batch"})
                continue
            seen_skus.add(sku)
            try:
                cls._clean(tenant_id, item)
            except ValidationError as e:
                errors.append({"index": index, "field": e.field, "message": e.message})

        if errors:
            raise ValidationError(
                f"{len(errors)} of {len(items)} materials are invalid", "items", {"errors": errors}
            )

        created = [
            cls.create(tenant_id, user_id=user_id, **item)["material"]
            for item in items
        ]
        return success_response({"materials": created, "count": len(created)}, "Materials created")

    @classmethod
    @transaction.atomic
    def update(cls, tenant_id: int, material_id: int, **data) -> Dict[str, Any]:
        material = cls.get_or_404(tenant_id, material_id)

        if "stock_quantity" in data:
            raise ValidationError(
                "Stock can only be changed through a stock adjustment", "stock_quantity"
            )

        unknown = set(data) - set(cls.UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown fields: {sorted(unknown)}", sorted(unknown)[0])

        cleaned = cls._clean(material.tenant_id, data, instance=material)
        for field, value in cleaned.items():
            setattr(material, field, value)
        material.save(update_fields=[*cleaned.keys(), "updated_at"])

        return success_response({"material": cls.serialize(material)}, "Material updated")

    @classmethod
    @transaction.atomic
    def delete(cls, tenant_id: int, material_id: int) -> Dict[str, Any]:
        material = cls.get_or_404(tenant_id, material_id)

        recipe_names = list(material.active_recipes().values_list("name", flat=True))
        if recipe_names:
            logger.warning(
                "Blocked deletion of material %s: used by active recipes %s", material.id, recipe_names
            )
            raise RecipeDeletionBlockedError(
                f"Cannot delete material used in active recipes: {', '.join(recipe_names)}",
                recipe_names,
            )

        material.delete()
        logger.info("Material deleted: %s (tenant=%s)", material.name, material.tenant_id)

        return success_response(message="Material deleted")

    # ==================== STOCK MOVEMENTS ====================

    @classmethod
    def resolve_change(cls, transaction_type: str, quantity: Decimal) -> Decimal:
        """Signed stock change for a movement; restock adds, deduction removes."""
        if transaction_type not in InventoryTransaction.TransactionType.values:
            raise ValidationError(
                f"Invalid transaction type. Valid: {InventoryTransaction.TransactionType.values}",
                "transaction_type",
            )
        if quantity == 0:
            raise ValidationError("Quantity must not be zero", "quantity")

        if transaction_type == InventoryTransaction.TransactionType.RESTOCK:
            return abs(quantity)
        if transaction_type == InventoryTransaction.TransactionType.DEDUCTION:
            return -abs(quantity)
        return quantity

    @classmethod
    def check_direction(cls, transaction_type: str, change: Decimal):
        """Deductions lower stock, restocks raise it, and no movement is zero."""
        if change == 0:
            raise ValidationError("Quantity must not be zero", "quantity")
        if transaction_type == InventoryTransaction.TransactionType.DEDUCTION and change > 0:
            raise ValidationError("A deduction cannot increase stock", "quantity")
        if transaction_type == InventoryTransaction.TransactionType.RESTOCK and change < 0:
            raise ValidationError("A restock cannot decrease stock", "quantity")

    @classmethod
    def coerce_reference(cls, reference: Any) -> StockReference:
        if reference is None:
            return StockReference.NONE
        if isinstance(reference, StockReference):
            return reference
        if isinstance(reference, dict):
            try:
                return StockReference.from_fields(reference.get("type"), reference.get("id"))
            except (TypeError, ValueError) as e:
                raise ValidationError(str(e), "reference")
        raise ValidationError(f"Invalid reference: {reference}", "reference")

    @classmethod
    def lock(cls, tenant_id: int, material_ids: List[int]) -> Dict[int, Material]:
        """Row-lock materials in ascending id order. Must run inside an atomic block."""
        materials = (
            Material.objects.select_for_update()
            .filter(tenant_id=tenant_id, is_deleted=False, id__in=material_ids)
            .order_by("id")
        )
        return {m.id: m for m in materials}

    @classmethod
    def apply_change(cls,
                     material: Material,
                     change: Decimal,
                     transaction_type: str,
                     reason: str,
                     notes: str = "",
                     user_id: int = None,
                     reference: StockReference = None) -> InventoryTransaction:
        """
        Write a stock change and its ledger row.

        ``material`` must have been read under the caller's lock. The write is
        conditional on the stock still holding the value that was read.
        """
        cls.check_direction(transaction_type, change)

        before = material.stock_quantity
        after = before + change

        if after < 0:
            raise InsufficientStockError(material.name, abs(change), before)

        updated = Material.objects.filter(
            pk=material.pk, stock_quantity=before
        ).update(stock_quantity=after, updated_at=timezone.now())
        if updated != 1:
            raise ConcurrencyConflictError(
                f"Stock of {material.name} changed during the update",
                {"material_id": material.pk},
            )
        material.stock_quantity = after

        trans = InventoryTransaction(
            tenant_id=material.tenant_id,
            material=material,
            transaction_type=transaction_type,
            quantity_before=before,
            quantity_change=change,
            quantity_after=after,
            reason=reason,
            notes=notes or "",
            user_id=user_id,
        )
        trans.reference = reference
        trans.save()
        return trans

    @classmethod
    def adjust_stock(cls,
                     tenant_id: int,
                     material_id: int,
                     transaction_type: str,
                     quantity: Any,
                     reason: str,
                     notes: str = "",
                     user_id: int = None,
                     reference: Optional[StockReference] = None) -> Dict[str, Any]:
        tenant_id = cls.require_tenant(tenant_id)

        if reason not in InventoryTransaction.Reason.values:
            raise ValidationError(f"Invalid reason. Valid: {InventoryTransaction.Reason.values}", "reason")

        quantity = round_decimal(to_decimal(quantity, "quantity"))
        change = cls.resolve_change(transaction_type, quantity)
        reference = cls.coerce_reference(reference)
        try:
            material_id = int(material_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid material id: {material_id}", "material_id")

        try:
            with transaction.atomic():
                user_id = resolve_actor(tenant_id, user_id)
                material = cls.lock(tenant_id, [material_id]).get(material_id)
                if material is None:
                    raise NotFoundError("Material", material_id)
                trans = cls.apply_change(
                    material, change, transaction_type, reason, notes, user_id, reference
                )
        except OperationalError as e:
            logger.error("Stock adjustment conflict on material %s: %s", material_id, e)
            raise ConcurrencyConflictError(details={"material_id": material_id}) from e
        except InsufficientStockError:
            logger.warning(
                "Rejected %s of %s on material %s: insufficient stock", transaction_type, quantity, material_id
            )
            raise

        logger.info(
            "Stock adjusted: material=%s %s %+f -> %s (%s)",
            material.id, transaction_type, change, trans.quantity_after, reason
        )

        from .transaction_service import InventoryTransactionService

        return success_response({
            "transaction": InventoryTransactionService.serialize(trans),
            "material": cls.serialize(material),
        }, f"Stock adjusted: {change:+} {material.unit}")
