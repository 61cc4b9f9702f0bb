from django.contrib import admin
from django.db.models import Sum
from django.utils.html import format_html
from django.utils.translation import gettext_lazy as _
from django.urls import reverse
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display
from unfold.contrib.filters.admin import (
    RangeDateFilter,
    RangeDateTimeFilter,
    RangeNumericFilter,
)
from .models import Tenant, User, Category, Product, Order, OrderItem


class OrderItemInline(TabularInline):
    model = OrderItem
    extra = 0
    fields = ('product', 'quantity', 'price', 'subtotal')
    readonly_fields = ('subtotal',)

    @display(description=_("Subtotal"))
    def subtotal(self, obj):
        if obj.pk:
            return f"${obj.price * obj.quantity:.2f}"
        return "-"


@admin.register(Tenant)
class TenantAdmin(ModelAdmin):
    list_display = ['id', 'name', 'slug', 'active_badge', 'material_count', 'created_at']
    list_filter = ['is_active', ('created_at', RangeDateFilter)]
    search_fields = ['name', 'slug']
    list_filter_submit = True
    prepopulated_fields = {'slug': ('name',)}

    @display(description=_("Status"), label=True)
    def active_badge(self, obj):
        if obj.is_active:
            return 'success', _("Active")
        return 'danger', _("Inactive")

    @display(description=_("Materials"))
    def material_count(self, obj):
        return obj.materials.filter(is_deleted=False).count()


@admin.register(User)
class UserAdmin(ModelAdmin):
    list_display = ['id', 'full_name', 'email', 'tenant', 'role_badge', 'status_badge']
    list_filter = ['tenant', 'role', 'status']
    search_fields = ['first_name', 'last_name', 'email']
    list_filter_submit = True
    list_fullwidth = True

    fieldsets = (
        (_('Personal Information'), {
            'fields': ('tenant', 'first_name', 'last_name', 'email'),
            'classes': ['tab'],
        }),
        (_('Access'), {
            'fields': ('role', 'status'),
            'classes': ['tab'],
        }),
    )

    @display(description=_("Name"), ordering='first_name')
    def full_name(self, obj):
        return obj.full_name

    @display(description=_("Role"), label=True)
    def role_badge(self, obj):
        colors = {
            'ADMIN': 'danger',
            'MANAGER': 'warning',
            'CASHIER': 'success',
            'USER': 'info',
        }
        return colors.get(obj.role, 'info'), obj.get_role_display()

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        if obj.status == 'ACTIVE':
            return 'success', obj.get_status_display()
        return 'danger', obj.get_status_display()


@admin.register(Category)
class CategoryAdmin(ModelAdmin):
    list_display = ['id', 'name', 'tenant', 'sort_order', 'product_count', 'created_at']
    list_filter = ['tenant', ('created_at', RangeDateFilter)]
    search_fields = ['name']
    list_filter_submit = True

    @display(description=_("Products"))
    def product_count(self, obj):
        return obj.products.count()


@admin.register(Product)
class ProductAdmin(ModelAdmin):
    list_display = ['id', 'name', 'tenant', 'category_link', 'price_display', 'active_recipe', 'times_ordered']
    list_filter = [
        'tenant',
        'category',
        ('price', RangeNumericFilter),
        ('created_at', RangeDateFilter),
    ]
    search_fields = ['name', 'description']
    list_filter_submit = True
    list_fullwidth = True

    fieldsets = (
        (_('Product Information'), {
            'fields': ('tenant', 'name', 'description', 'category')
        }),
        (_('Pricing'), {
            'fields': ('price',)
        }),
    )

    @display(description=_("Category"))
    def category_link(self, obj):
        if not obj.category_id:
            return "-"
        url = reverse('admin:main_category_change', args=[obj.category_id])
        return format_html('<a href="{}">{}</a>', url, obj.category.name)

    @display(description=_("Price"), ordering='price')
    def price_display(self, obj):
        return f"${obj.price:.2f}"

    @display(description=_("Active Recipe"))
    def active_recipe(self, obj):
        recipe = obj.recipes.filter(is_active=True, is_deleted=False).first()
        if not recipe:
            return "-"
        url = reverse('admin:stock_recipe_change', args=[recipe.pk])
        return format_html('<a href="{}">{}</a>', url, recipe.name)

    @display(description=_("Times Ordered"))
    def times_ordered(self, obj):
        return obj.order_items.aggregate(total=Sum('quantity'))['total'] or 0


@admin.register(Order)
class OrderAdmin(ModelAdmin):
    list_display = ['display_id', 'tenant', 'user_link', 'status_badge',
                    'total_amount_display', 'items_count', 'created_at']
    list_filter = [
        'tenant',
        'status',
        ('created_at', RangeDateTimeFilter),
        ('total_amount', RangeNumericFilter),
    ]
    search_fields = ['display_id', 'user__first_name', 'user__last_name', 'user__email']
    list_filter_submit = True
    list_fullwidth = True
    inlines = [OrderItemInline]
    readonly_fields = ['display_id', 'created_at', 'updated_at', 'completed_at']

    fieldsets = (
        (_('Order Information'), {
            'fields': ('tenant', 'display_id', 'user', 'cashier', 'status')
        }),
        (_('Financial'), {
            'fields': ('total_amount',)
        }),
        (_('Timestamps'), {
            'fields': ('created_at', 'updated_at', 'completed_at'),
        }),
    )

    @display(description=_("Customer"))
    def user_link(self, obj):
        if not obj.user_id:
            return "-"
        url = reverse('admin:main_user_change', args=[obj.user_id])
        return format_html('<a href="{}">{}</a>', url, obj.user)

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        colors = {
            'OPEN': 'info',
            'PREPARING': 'warning',
            'READY': 'success',
            'COMPLETED': 'success',
            'CANCELED': 'danger',
        }
        return colors.get(obj.status, 'info'), obj.get_status_display()

    @display(description=_("Total"), ordering='total_amount')
    def total_amount_display(self, obj):
        return f"${obj.total_amount:.2f}"

    @display(description=_("Items"))
    def items_count(self, obj):
        return obj.items.count()
