from typing import Dict, Any, Optional, List, Tuple
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from datetime import date, timedelta
from django.db.models import Model
from django.utils import timezone


class ServiceError(Exception):
    def __init__(self, message: str, code: str = "ERROR", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    def __init__(self, message: str, field: str = None, details: Dict = None):
        super().__init__(message, "VALIDATION_ERROR", details)
        self.field = field


class NotFoundError(ServiceError):
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)}
        )


class BusinessRuleError(ServiceError):
    def __init__(self, message: str, rule: str = None, details: Dict = None):
        super().__init__(message, "BUSINESS_RULE_VIOLATION", {"rule": rule, **(details or {})})
        self.rule = rule


class InsufficientStockError(ServiceError):
    def __init__(self, item_name: str, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient stock for {item_name}: required {required}, available {available}",
            "INSUFFICIENT_STOCK",
            {"item": item_name, "required": str(required), "available": str(available)}
        )
        self.required = required
        self.available = available


class InsufficientMaterialsError(ServiceError):
    """Raised before production starts, carrying every shortfall at once."""

    def __init__(self, recipe_name: str, requested_quantity: int, shortages: List[Dict]):
        names = ", ".join(s["material_name"] for s in shortages)
        super().__init__(
            f"Insufficient materials to produce {requested_quantity} x {recipe_name}: {names}",
            "INSUFFICIENT_MATERIALS",
            {
                "recipe": recipe_name,
                "requested_quantity": requested_quantity,
                "insufficient_materials": [
                    {key: str(value) if isinstance(value, Decimal) else value for key, value in s.items()}
                    for s in shortages
                ],
            }
        )
        self.shortages = shortages


class ConcurrencyConflictError(ServiceError):
    """Storage-level lock or write conflict. Safe to retry from scratch."""

    def __init__(self, message: str = "Stock was modified concurrently, please retry", details: Dict = None):
        super().__init__(message, "CONCURRENCY_CONFLICT", details)


class RecipeDeletionBlockedError(BusinessRuleError):
    def __init__(self, message: str, blockers: List[str] = None):
        super().__init__(message, "deletion_blocked", {"blocked_by": blockers or []})
        self.code = "DELETION_BLOCKED"
        self.blockers = blockers or []


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


def to_decimal(value: Any, field: str = None) -> Decimal:
    """Parse a numeric input, raising ValidationError for anything non-numeric."""
    if isinstance(value, Decimal):
        result = value
    else:
        if value is None or isinstance(value, bool) or str(value).strip() == "":
            raise ValidationError(f"A numeric value is required for {field or 'value'}", field)
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"Invalid number for {field or 'value'}: {value}", field)
    if not result.is_finite():
        raise ValidationError(f"Invalid number for {field or 'value'}: {value}", field)
    return result


def round_decimal(value: Decimal, places: int = 4, rounding: str = ROUND_HALF_UP) -> Decimal:
    if value is None:
        return Decimal("0")
    quantize_str = "0." + "0" * places if places > 0 else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def to_positive_int(value: Any, field: str = "quantity") -> int:
    """Production quantities are whole units greater than zero."""
    number = to_decimal(value, field)
    if number != number.to_integral_value() or number <= 0:
        raise ValidationError(f"{field} must be a positive whole number", field)
    return int(number)


def get_date_range(period: str) -> Tuple[date, date]:
    today = timezone.now().date()

    if period == "today":
        return today, today
    elif period == "yesterday":
        return today - timedelta(days=1), today - timedelta(days=1)
    elif period == "this_week":
        start = today - timedelta(days=today.weekday())
        return start, today
    elif period == "this_month":
        return today.replace(day=1), today
    elif period == "last_month":
        first_of_month = today.replace(day=1)
        last_month_end = first_of_month - timedelta(days=1)
        return last_month_end.replace(day=1), last_month_end
    elif period.startswith("last_") and period.endswith("_days"):
        days = period.replace("last_", "").replace("_days", "")
        if days.isdigit():
            return today - timedelta(days=int(days)), today
    raise ValidationError(f"Unknown period: {period}", "period")


def resolve_actor(tenant_id: int, user_id: Any) -> Optional[int]:
    """Return the acting user's id after checking it belongs to the tenant."""
    if user_id in (None, ""):
        return None
    from main.models import User

    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid user id: {user_id}", "user_id")
    if not User.objects.for_tenant(tenant_id).filter(id=user_id).exists():
        raise NotFoundError("User", user_id)
    return user_id


class BaseService:
    model = None

    @classmethod
    def require_tenant(cls, tenant_id: Any) -> int:
        if tenant_id in (None, ""):
            raise ValidationError("Tenant context is required", "tenant_id")
        try:
            return int(tenant_id)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid tenant id: {tenant_id}", "tenant_id")

    @classmethod
    def scoped(cls, tenant_id: Any):
        tenant_id = cls.require_tenant(tenant_id)
        queryset = cls.model.objects.filter(tenant_id=tenant_id)
        if hasattr(cls.model, "is_deleted"):
            queryset = queryset.filter(is_deleted=False)
        return queryset

    @classmethod
    def get_by_id(cls, tenant_id: Any, id: int) -> Optional[Model]:
        try:
            return cls.scoped(tenant_id).get(id=id)
        except (cls.model.DoesNotExist, ValueError, TypeError):
            return None

    @classmethod
    def get_or_404(cls, tenant_id: Any, id: int) -> Model:
        obj = cls.get_by_id(tenant_id, id)
        if not obj:
            raise NotFoundError(cls.model.__name__, id)
        return obj

    @classmethod
    def exists(cls, tenant_id: Any, id: int) -> bool:
        return cls.scoped(tenant_id).filter(id=id).exists()
