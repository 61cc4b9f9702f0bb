from typing import Dict, Any
from decimal import Decimal
from datetime import date
from django.db.models import Sum, Count, Q

from stock.models import InventoryTransaction, StockReference
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, get_date_range,
)


class InventoryTransactionService(BaseService):
    model = InventoryTransaction

    @classmethod
    def serialize(cls, trans: InventoryTransaction) -> Dict[str, Any]:
        return {
            "id": trans.id,
            "uuid": str(trans.uuid),
            "material_id": trans.material_id,
            "material_name": trans.material.name,
            "material_unit": trans.material.unit,
            "transaction_type": trans.transaction_type,
            "transaction_type_display": trans.get_transaction_type_display(),
            "quantity_before": str(trans.quantity_before),
            "quantity_change": str(trans.quantity_change),
            "quantity_after": str(trans.quantity_after),
            "direction": trans.direction,
            "reason": trans.reason,
            "reason_display": trans.get_reason_display(),
            "reference": trans.reference.as_dict(),
            "user_id": trans.user_id,
            "notes": trans.notes,
            "created_at": trans.created_at.isoformat(),
        }

    @classmethod
    def list(cls,
             tenant_id: int,
             material_id: int = None,
             transaction_type: str = None,
             reason: str = None,
             date_from: date = None,
             date_to: date = None,
             period: str = None,
             reference: StockReference = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.scoped(tenant_id).select_related("material")

        if material_id:
            queryset = queryset.filter(material_id=material_id)

        if transaction_type:
            if transaction_type not in InventoryTransaction.TransactionType.values:
                raise ValidationError("Invalid transaction type", "transaction_type")
            queryset = queryset.filter(transaction_type=transaction_type)

        if reason:
            if reason not in InventoryTransaction.Reason.values:
                raise ValidationError("Invalid reason", "reason")
            queryset = queryset.filter(reason=reason)

        if period:
            date_from, date_to = get_date_range(period)

        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)

        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        if reference is not None and not reference.is_empty:
            queryset = queryset.filter(reference_type=reference.kind, reference_id=reference.id)

        queryset = queryset.order_by("-created_at", "-id")

        transactions, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "transactions": [cls.serialize(t) for t in transactions],
            "pagination": pagination,
            "transaction_types": [
                {"value": c[0], "label": c[1]}
                for c in InventoryTransaction.TransactionType.choices
            ],
            "reasons": [
                {"value": c[0], "label": c[1]}
                for c in InventoryTransaction.Reason.choices
            ],
        })

    @classmethod
    def get_for_reference(cls, tenant_id: int, reference: StockReference) -> Dict[str, Any]:
        if reference is None or reference.is_empty:
            raise ValidationError("A reference is required", "reference")

        transactions = cls.scoped(tenant_id).filter(
            reference_type=reference.kind,
            reference_id=reference.id,
        ).select_related("material").order_by("id")

        return success_response({
            "reference": reference.as_dict(),
            "transactions": [cls.serialize(t) for t in transactions],
            "count": len(transactions),
        })

    @classmethod
    def get_summary_for_material(cls,
                                 tenant_id: int,
                                 material_id: int,
                                 date_from: date = None,
                                 date_to: date = None) -> Dict[str, Any]:
        from stock.models import Material

        if not Material.objects.filter(tenant_id=cls.require_tenant(tenant_id), id=material_id).exists():
            raise NotFoundError("Material", material_id)

        queryset = cls.scoped(tenant_id).filter(material_id=material_id)
        if date_from:
            queryset = queryset.filter(created_at__date__gte=date_from)
        if date_to:
            queryset = queryset.filter(created_at__date__lte=date_to)

        totals = queryset.aggregate(
            total_transactions=Count("id"),
            total_increases=Sum("quantity_change", filter=Q(quantity_change__gt=0)),
            total_decreases=Sum("quantity_change", filter=Q(quantity_change__lt=0)),
            net_change=Sum("quantity_change"),
        )

        by_type = {
            row["transaction_type"]: {"count": row["count"], "total": str(row["total"])}
            for row in queryset.values("transaction_type").annotate(
                count=Count("id"), total=Sum("quantity_change")
            ).order_by("transaction_type")
        }
        by_reason = {
            row["reason"]: {"count": row["count"], "total": str(row["total"])}
            for row in queryset.values("reason").annotate(
                count=Count("id"), total=Sum("quantity_change")
            ).order_by("reason")
        }

        return success_response({
            "material_id": int(material_id),
            "total_transactions": totals["total_transactions"],
            "total_increases": str(totals["total_increases"] or Decimal("0")),
            "total_decreases": str(abs(totals["total_decreases"] or Decimal("0"))),
            "net_change": str(totals["net_change"] or Decimal("0")),
            "by_type": by_type,
            "by_reason": by_reason,
        })
