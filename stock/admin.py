from django import forms
from django.contrib import admin
from django.forms.models import BaseInlineFormSet
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from django.urls import reverse
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display
from unfold.contrib.filters.admin import (
    RangeDateTimeFilter,
    RangeNumericFilter,
)

from .models import Material, Recipe, RecipeComponent, InventoryTransaction


STATUS_COLORS = {
    Material.StockStatus.NORMAL: 'success',
    Material.StockStatus.LOW: 'warning',
    Material.StockStatus.CRITICAL: 'danger',
    Material.StockStatus.OUT_OF_STOCK: 'danger',
}


class RecipeComponentFormSet(BaseInlineFormSet):
    """Components inherit the recipe's tenant and may only use that tenant's materials."""

    def clean(self):
        super().clean()
        tenant_id = self.instance.tenant_id
        for form in self.forms:
            if self._should_delete_form(form):
                continue
            material = getattr(form, 'cleaned_data', {}).get('material')
            if material is not None and material.tenant_id != tenant_id:
                raise forms.ValidationError(
                    _("%(material)s belongs to another tenant."), params={'material': material.name}
                )

    def save_new(self, form, commit=True):
        form.instance.tenant_id = self.instance.tenant_id
        return super().save_new(form, commit=commit)


class RecipeComponentInline(TabularInline):
    model = RecipeComponent
    formset = RecipeComponentFormSet
    extra = 0
    fields = ('material', 'quantity_required', 'waste_percentage', 'effective', 'cost', 'sort_order')
    readonly_fields = ('effective', 'cost')
    autocomplete_fields = ('material',)

    @display(description=_("Effective"))
    def effective(self, obj):
        if obj.pk:
            return f"{obj.effective_quantity} {obj.material.unit}"
        return "-"

    @display(description=_("Cost"))
    def cost(self, obj):
        if obj.pk:
            return f"${obj.total_cost:.2f}"
        return "-"


@admin.register(Material)
class MaterialAdmin(ModelAdmin):
    list_display = ['id', 'name', 'sku', 'tenant', 'category', 'stock_display',
                    'reorder_level', 'unit_cost', 'status_badge']
    list_filter = [
        'tenant',
        'unit',
        'category',
        'is_deleted',
        ('stock_quantity', RangeNumericFilter),
    ]
    search_fields = ['name', 'sku', 'category']
    list_filter_submit = True
    list_fullwidth = True
    readonly_fields = ['stock_quantity', 'created_at', 'updated_at', 'deleted_at']

    fieldsets = (
        (_('Material'), {
            'fields': ('tenant', 'name', 'sku', 'category', 'unit', 'description'),
            'classes': ['tab'],
        }),
        (_('Stock & Cost'), {
            'fields': ('stock_quantity', 'reorder_level', 'unit_cost'),
            'classes': ['tab'],
            'description': _('Stock changes only through adjustments so every change is in the ledger.'),
        }),
        (_('Lifecycle'), {
            'fields': ('is_deleted', 'deleted_at', 'created_at', 'updated_at'),
            'classes': ['tab'],
        }),
    )

    @display(description=_("Stock"), ordering='stock_quantity')
    def stock_display(self, obj):
        return f"{obj.stock_quantity.normalize()} {obj.unit}"

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        status = Material.StockStatus(obj.stock_status)
        return STATUS_COLORS.get(status, 'info'), status.label


@admin.register(Recipe)
class RecipeAdmin(ModelAdmin):
    list_display = ['id', 'name', 'tenant', 'product_link', 'yield_display',
                    'active_badge', 'component_count', 'cost_per_unit_display']
    list_filter = ['tenant', 'is_active', 'yield_unit', 'is_deleted']
    search_fields = ['name', 'product__name']
    list_filter_submit = True
    list_fullwidth = True
    inlines = [RecipeComponentInline]
    readonly_fields = ['is_active', 'created_at', 'updated_at']

    fieldsets = (
        (_('Recipe'), {
            'fields': ('tenant', 'product', 'name', 'description', 'notes'),
        }),
        (_('Yield'), {
            'fields': ('yield_quantity', 'yield_unit', 'is_active'),
            'description': _('Use the activate action so sibling recipes are switched off together.'),
        }),
    )
    actions = ['activate_recipes']

    @display(description=_("Product"))
    def product_link(self, obj):
        url = reverse('admin:main_product_change', args=[obj.product_id])
        return format_html('<a href="{}">{}</a>', url, obj.product.name)

    @display(description=_("Yield"))
    def yield_display(self, obj):
        return f"{obj.yield_quantity.normalize()} {obj.yield_unit}"

    @display(description=_("Active"), label=True)
    def active_badge(self, obj):
        if obj.is_active:
            return 'success', _("Active")
        return 'info', _("Inactive")

    @display(description=_("Components"))
    def component_count(self, obj):
        return obj.components.count()

    @display(description=_("Cost / unit"))
    def cost_per_unit_display(self, obj):
        return f"${obj.cost_per_unit:.2f}"

    @admin.action(description=_("Activate selected recipes"))
    def activate_recipes(self, request, queryset):
        from .services import RecipeService

        for recipe in queryset:
            RecipeService.activate(recipe.tenant_id, recipe.id)
        self.message_user(request, _("Recipes activated."))


@admin.register(InventoryTransaction)
class InventoryTransactionAdmin(ModelAdmin):
    list_display = ['id', 'material', 'tenant', 'type_badge', 'quantity_before',
                    'change_display', 'quantity_after', 'reason', 'reference_display', 'user', 'created_at']
    list_filter = [
        'tenant',
        'transaction_type',
        'reason',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['material__name', 'material__sku', 'notes']
    list_filter_submit = True
    list_fullwidth = True

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @display(description=_("Type"), label=True)
    def type_badge(self, obj):
        colors = {
            'restock': 'success',
            'deduction': 'danger',
            'adjustment': 'warning',
        }
        return colors.get(obj.transaction_type, 'info'), obj.get_transaction_type_display()

    @display(description=_("Change"), ordering='quantity_change')
    def change_display(self, obj):
        return f"{obj.quantity_change:+}"

    @display(description=_("Reference"))
    def reference_display(self, obj):
        reference = obj.reference
        if reference.is_empty:
            return "-"
        return f"{reference.kind} #{reference.id}"
