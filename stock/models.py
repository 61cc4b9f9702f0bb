import uuid as uuid_lib
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR
from typing import Optional

from django.conf import settings
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import Q

from main.models import SoftDeleteMixin, SoftDeleteManager


# Grid of the 4-place quantity columns
QUANTITY_STEP = Decimal("0.0001")
MIN_QUANTITY = Decimal("0.001")
MAX_WASTE_PERCENTAGE = Decimal("999.99")


def as_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def critical_ratio() -> Decimal:
    return as_decimal(getattr(settings, "STOCK_CRITICAL_RATIO", "0.5"))


def cost_places() -> int:
    return int(getattr(settings, "STOCK_COST_PLACES", 2))


class ReferenceType(models.TextChoices):
    ORDER = "order", "Order"
    ADJUSTMENT = "adjustment", "Stock Adjustment"


@dataclass(frozen=True)
class StockReference:
    """
    The event that caused a stock movement.

    Either empty (``StockReference.NONE``) or a kind from ``ReferenceType``
    carrying the id of the triggering record.
    """

    kind: str = ""
    id: Optional[int] = None

    def __post_init__(self):
        if self.kind and self.kind not in ReferenceType.values:
            raise ValueError(f"Unknown reference type: {self.kind}")
        if self.kind and self.id is None:
            raise ValueError(f"Reference '{self.kind}' requires an id")
        if not self.kind and self.id is not None:
            raise ValueError("Reference id given without a reference type")

    @classmethod
    def order(cls, order_id: int) -> "StockReference":
        return cls(ReferenceType.ORDER.value, int(order_id))

    @classmethod
    def adjustment(cls, adjustment_id: int) -> "StockReference":
        return cls(ReferenceType.ADJUSTMENT.value, int(adjustment_id))

    @classmethod
    def from_fields(cls, reference_type: Optional[str], reference_id: Optional[int]) -> "StockReference":
        if not reference_type:
            return cls.NONE
        return cls(str(reference_type), int(reference_id) if reference_id is not None else None)

    @property
    def is_empty(self) -> bool:
        return not self.kind

    def as_dict(self):
        if self.is_empty:
            return None
        return {"type": self.kind, "id": self.id}


StockReference.NONE = StockReference()


class Material(SoftDeleteMixin, models.Model):
    class Unit(models.TextChoices):
        KG = "kg", "Kilogram"
        G = "g", "Gram"
        L = "L", "Liter"
        ML = "ml", "Milliliter"
        PCS = "pcs", "Pieces"
        BOX = "box", "Box"
        BOTTLE = "bottle", "Bottle"
        CAN = "can", "Can"
        BAG = "bag", "Bag"

    class StockStatus(models.TextChoices):
        NORMAL = "normal", "Normal"
        LOW = "low", "Low Stock"
        CRITICAL = "critical", "Critical"
        OUT_OF_STOCK = "out_of_stock", "Out of Stock"

    tenant = models.ForeignKey(
        "main.Tenant", on_delete=models.CASCADE, related_name="materials"
    )
    name = models.CharField(max_length=200)
    sku = models.CharField(max_length=50, blank=True, default="")
    category = models.CharField(max_length=100, blank=True, default="", db_index=True)
    unit = models.CharField(max_length=10, choices=Unit.choices)
    description = models.TextField(blank=True, default="")

    stock_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    reorder_level = models.DecimalField(
        max_digits=15, decimal_places=4, default=0, validators=[MinValueValidator(0)]
    )
    unit_cost = models.DecimalField(
        max_digits=15, decimal_places=4, default=0, validators=[MinValueValidator(0)]
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = SoftDeleteManager()

    class Meta:
        ordering = ["name"]
        constraints = [
            models.CheckConstraint(
                condition=Q(stock_quantity__gte=0),
                name="material_stock_non_negative",
            ),
            models.UniqueConstraint(
                fields=["tenant", "sku"],
                condition=Q(is_deleted=False) & ~Q(sku=""),
                name="material_sku_unique_per_tenant",
            ),
        ]
        indexes = [
            models.Index(fields=["tenant", "is_deleted"]),
        ]

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity < self.reorder_level

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity <= 0

    @property
    def stock_status(self) -> str:
        if self.is_out_of_stock:
            return self.StockStatus.OUT_OF_STOCK
        if self.reorder_level > 0 and self.stock_quantity <= self.reorder_level * critical_ratio():
            return self.StockStatus.CRITICAL
        if self.is_low_stock:
            return self.StockStatus.LOW
        return self.StockStatus.NORMAL

    @property
    def total_value(self) -> Decimal:
        return self.stock_quantity * self.unit_cost

    def has_sufficient_stock(self, quantity) -> bool:
        return self.stock_quantity >= Decimal(str(quantity))

    def active_recipes(self):
        return Recipe.objects.filter(
            components__material=self,
            is_active=True,
            is_deleted=False,
        ).distinct()

    def total_required_by_active_recipes(self) -> Decimal:
        """Effective quantity this material contributes to one unit of every active recipe."""
        components = self.recipe_components.filter(
            recipe__is_active=True, recipe__is_deleted=False
        )
        return sum((c.effective_quantity for c in components), Decimal("0"))

    def can_be_deleted(self) -> bool:
        return not self.active_recipes().exists()

    def __str__(self):
        return f"{self.name} ({self.unit})"


class Recipe(SoftDeleteMixin, models.Model):
    class YieldUnit(models.TextChoices):
        PCS = "pcs", "Pieces"
        KG = "kg", "Kilogram"
        L = "L", "Liter"
        SERVING = "serving", "Serving"
        BATCH = "batch", "Batch"

    tenant = models.ForeignKey(
        "main.Tenant", on_delete=models.CASCADE, related_name="recipes"
    )
    product = models.ForeignKey(
        "main.Product", on_delete=models.CASCADE, related_name="recipes"
    )
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    yield_quantity = models.DecimalField(
        max_digits=15, decimal_places=4, default=1, validators=[MinValueValidator(MIN_QUANTITY)]
    )
    yield_unit = models.CharField(
        max_length=10, choices=YieldUnit.choices, default=YieldUnit.PCS
    )
    is_active = models.BooleanField(default=False, db_index=True)
    notes = models.TextField(blank=True, default="")

    created_by = models.ForeignKey(
        "main.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="created_recipes",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = SoftDeleteManager()

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["tenant", "product"],
                condition=Q(is_active=True, is_deleted=False),
                name="one_active_recipe_per_product",
            ),
        ]

    def calculate_total_cost(self) -> Decimal:
        return sum(
            (component.total_cost for component in self.components.all()),
            Decimal("0"),
        )

    @property
    def cost_per_unit(self) -> Decimal:
        if self.yield_quantity <= 0:
            return Decimal("0")
        return self.calculate_total_cost() / self.yield_quantity

    def can_be_deleted(self) -> bool:
        return not self.is_active

    def __str__(self):
        return self.name


class RecipeComponent(models.Model):
    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    tenant = models.ForeignKey(
        "main.Tenant", on_delete=models.CASCADE, related_name="recipe_components"
    )
    recipe = models.ForeignKey(
        Recipe, on_delete=models.CASCADE, related_name="components"
    )
    material = models.ForeignKey(
        Material, on_delete=models.PROTECT, related_name="recipe_components"
    )
    quantity_required = models.DecimalField(
        max_digits=15, decimal_places=4, validators=[MinValueValidator(MIN_QUANTITY)]
    )
    waste_percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(MAX_WASTE_PERCENTAGE)],
    )
    notes = models.TextField(blank=True, default="")
    sort_order = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["sort_order", "id"]
        constraints = [
            models.UniqueConstraint(
                fields=["recipe", "material"],
                name="recipe_component_material_unique",
            ),
        ]

    @property
    def effective_quantity(self) -> Decimal:
        """Per-unit draw including waste: quantity_required * (1 + waste / 100)."""
        return as_decimal(self.quantity_required) * (1 + as_decimal(self.waste_percentage) / 100)

    @property
    def waste_amount(self) -> Decimal:
        return self.effective_quantity - as_decimal(self.quantity_required)

    @property
    def total_cost(self) -> Decimal:
        return self.effective_quantity * self.material.unit_cost

    @property
    def cost_per_recipe_unit(self) -> Decimal:
        if self.recipe.yield_quantity <= 0:
            return Decimal("0")
        return self.total_cost / self.recipe.yield_quantity

    @property
    def max_producible(self) -> int:
        effective = self.effective_quantity
        if effective <= 0:
            return 0
        ratio = as_decimal(self.material.stock_quantity) / effective
        return int(ratio.to_integral_value(rounding=ROUND_FLOOR))

    def required_for(self, quantity: int) -> Decimal:
        return self.effective_quantity * quantity

    def deduction_for(self, quantity: int) -> Decimal:
        """
        Stock taken for ``quantity`` units, rounded up onto the stock column's grid.

        Stock itself sits on that grid, so whenever ``required_for`` fits in
        stock the rounded amount fits too.
        """
        return self.required_for(quantity).quantize(QUANTITY_STEP, rounding=ROUND_CEILING)

    def has_sufficient_stock(self, quantity: int = 1) -> bool:
        return self.material.stock_quantity >= self.required_for(quantity)

    def shortage_for(self, quantity: int = 1) -> Decimal:
        return max(Decimal("0"), self.required_for(quantity) - self.material.stock_quantity)

    @property
    def display_name(self) -> str:
        label = f"{self.material.name}: {self.quantity_required} {self.material.unit}"
        if self.waste_percentage > 0:
            label += f" (+{self.waste_percentage}% waste)"
        return label

    def __str__(self):
        return f"{self.material.name} × {self.quantity_required}"


class InventoryTransaction(models.Model):
    """
    Append-only record of one stock movement on a material.
    """

    class TransactionType(models.TextChoices):
        ADJUSTMENT = "adjustment", "Manual Adjustment"
        DEDUCTION = "deduction", "Stock Deduction"
        RESTOCK = "restock", "Restock"

    class Reason(models.TextChoices):
        PURCHASE = "purchase", "Purchase"
        WASTE = "waste", "Waste"
        DAMAGE = "damage", "Damage"
        COUNT_ADJUSTMENT = "count_adjustment", "Count Adjustment"
        PRODUCTION = "production", "Production"
        SALE = "sale", "Sale"
        OTHER = "other", "Other"

    uuid = models.UUIDField(default=uuid_lib.uuid4, unique=True, editable=False)
    tenant = models.ForeignKey(
        "main.Tenant", on_delete=models.CASCADE, related_name="inventory_transactions"
    )
    material = models.ForeignKey(
        Material, on_delete=models.PROTECT, related_name="transactions"
    )
    transaction_type = models.CharField(
        max_length=20, choices=TransactionType.choices, db_index=True
    )
    quantity_before = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_change = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_after = models.DecimalField(max_digits=15, decimal_places=4)
    reason = models.CharField(max_length=20, choices=Reason.choices, db_index=True)
    notes = models.TextField(blank=True, default="")

    # Triggering record, read back through ``reference``
    reference_type = models.CharField(
        max_length=20, choices=ReferenceType.choices, blank=True, default=""
    )
    reference_id = models.PositiveBigIntegerField(null=True, blank=True)

    user = models.ForeignKey(
        "main.User",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="inventory_transactions",
    )
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["material", "created_at"]),
            models.Index(fields=["tenant", "transaction_type"]),
            models.Index(fields=["reference_type", "reference_id"]),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Inventory transactions are append-only")
        if self.quantity_before + self.quantity_change != self.quantity_after:
            raise ValueError("quantity_after must equal quantity_before + quantity_change")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Inventory transactions are append-only")

    @property
    def reference(self) -> StockReference:
        return StockReference.from_fields(self.reference_type, self.reference_id)

    @reference.setter
    def reference(self, value: Optional[StockReference]):
        value = value or StockReference.NONE
        self.reference_type = value.kind
        self.reference_id = value.id

    @property
    def is_increase(self) -> bool:
        return self.quantity_change > 0

    @property
    def is_decrease(self) -> bool:
        return self.quantity_change < 0

    @property
    def absolute_change(self) -> Decimal:
        return abs(self.quantity_change)

    @property
    def direction(self) -> str:
        if self.is_increase:
            return "in"
        if self.is_decrease:
            return "out"
        return "neutral"

    def __str__(self):
        return f"{self.material.name} {self.quantity_change:+} | {self.get_transaction_type_display()}"
