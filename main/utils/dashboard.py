from django.conf import settings
from django.db.models import Sum, Count, Q, F
from django.db import models
from django.utils import timezone
from datetime import timedelta, datetime
from main.models import Order, Tenant
from stock.models import Material, Recipe, InventoryTransaction, critical_ratio
import json
import pytz
from decimal import Decimal


LOCAL_TZ = pytz.timezone(settings.TIME_ZONE)


def dashboard_callback(request, context):
    period = request.GET.get('period', 'today')
    date_from = request.GET.get('date_from', '')
    date_to = request.GET.get('date_to', '')
    tenant_id = request.GET.get('tenant', '')

    now = timezone.now().astimezone(LOCAL_TZ)

    start_date, end_date, interval = calculate_date_range(period, date_from, date_to, now)

    if date_from or date_to:
        period = 'custom'

    materials = Material.objects.active()
    recipes = Recipe.objects.active()
    transactions = InventoryTransaction.objects.all()
    orders = Order.objects.active()
    if tenant_id:
        materials = materials.filter(tenant_id=tenant_id)
        recipes = recipes.filter(tenant_id=tenant_id)
        transactions = transactions.filter(tenant_id=tenant_id)
        orders = orders.filter(tenant_id=tenant_id)

    ratio = critical_ratio()

    stock_counts = materials.aggregate(
        total=Count('id'),
        out_of_stock=Count('id', filter=Q(stock_quantity__lte=0)),
        low=Count('id', filter=Q(stock_quantity__gt=0, stock_quantity__lt=F('reorder_level'))),
        critical=Count('id', filter=Q(
            stock_quantity__gt=0, reorder_level__gt=0, stock_quantity__lte=F('reorder_level') * ratio
        )),
        inventory_value=Sum(
            F('stock_quantity') * F('unit_cost'),
            output_field=models.DecimalField(max_digits=30, decimal_places=8)
        ),
    )
    inventory_value = stock_counts['inventory_value'] or Decimal('0')

    period_transactions = transactions.filter(created_at__gte=start_date, created_at__lte=end_date)
    movement = period_transactions.values('transaction_type').annotate(
        count=Count('id'),
        quantity=Sum('quantity_change'),
    )
    movement_stats = {
        choice.value: {'label': choice.label, 'count': 0, 'quantity': 0.0}
        for choice in InventoryTransaction.TransactionType
    }
    for row in movement:
        movement_stats[row['transaction_type']]['count'] = row['count']
        movement_stats[row['transaction_type']]['quantity'] = float(row['quantity'] or 0)

    movement_chart = {
        'labels': [s['label'] for s in movement_stats.values()],
        'data': [s['count'] for s in movement_stats.values()],
        'colors': ['#f59e0b', '#ef4444', '#10b981'],
    }

    most_consumed = period_transactions.filter(
        transaction_type=InventoryTransaction.TransactionType.DEDUCTION
    ).values(
        'material__name',
        'material__unit',
    ).annotate(
        consumed=Sum('quantity_change'),
    ).order_by('consumed')[:10]

    completed_orders = orders.filter(
        status=Order.Status.COMPLETED,
        completed_at__gte=start_date,
        completed_at__lte=end_date,
    ).count()

    low_stock = [
        {
            'id': material.id,
            'name': material.name,
            'stock': float(material.stock_quantity),
            'reorder_level': float(material.reorder_level),
            'unit': material.unit,
            'status': material.stock_status,
        }
        for material in materials.filter(stock_quantity__lt=F('reorder_level')).order_by('stock_quantity')[:10]
    ]

    recent_transactions = period_transactions.select_related('material', 'user').order_by('-created_at')[:10]

    filters = [
        {'label': 'Today', 'link': '?period=today', 'active': period == 'today', 'icon': 'today'},
        {'label': 'Yesterday', 'link': '?period=yesterday', 'active': period == 'yesterday', 'icon': 'event'},
        {'label': 'Week', 'link': '?period=week', 'active': period == 'week', 'icon': 'date_range'},
        {'label': 'Month', 'link': '?period=month', 'active': period == 'month', 'icon': 'calendar_month'},
    ]

    period_label = get_period_label(period, start_date, end_date)

    context.update({
        'period': period,
        'period_label': period_label,
        'filters': filters,
        'current_time': now.strftime('%d.%m.%Y %H:%M'),
        'timezone_label': settings.TIME_ZONE,
        'tenants': Tenant.objects.filter(is_active=True),
        'selected_tenant': tenant_id,

        'kpis': [
            {
                'title': 'Materials',
                'metric': str(stock_counts['total']),
                'footer': f"{stock_counts['low']} below reorder level",
                'icon': 'inventory_2',
                'color': 'blue',
            },
            {
                'title': 'Out of Stock',
                'metric': str(stock_counts['out_of_stock']),
                'footer': f"{stock_counts['critical']} critical",
                'icon': 'warning',
                'color': 'red',
            },
            {
                'title': 'Inventory Value',
                'metric': f'{inventory_value:,.2f}',
                'footer': 'Stock on hand at unit cost',
                'icon': 'payments',
                'color': 'emerald',
            },
            {
                'title': 'Active Recipes',
                'metric': str(recipes.filter(is_active=True).count()),
                'footer': f'{completed_orders} orders completed · {period_label}',
                'icon': 'menu_book',
                'color': 'violet',
            },
        ],

        'movement_stats': movement_stats,
        'movement_chart_json': json.dumps(movement_chart),
        'consumption_chart_json': json.dumps(get_consumption_chart_data(period_transactions, start_date, end_date, interval)),
        'most_consumed': [
            {'name': row['material__name'], 'unit': row['material__unit'], 'consumed': float(-row['consumed'])}
            for row in most_consumed
        ],
        'low_stock_materials': low_stock,
        'recent_transactions': [
            {
                'id': t.id,
                'material': t.material.name,
                'type': t.get_transaction_type_display(),
                'change': float(t.quantity_change),
                'after': float(t.quantity_after),
                'user': t.user.full_name if t.user else None,
                'created_at': t.created_at.astimezone(LOCAL_TZ).strftime('%d.%m.%Y %H:%M'),
            }
            for t in recent_transactions
        ],
    })

    return context


def calculate_date_range(period, date_from, date_to, now):
    start_date = None
    end_date = None
    interval = 'day'

    if date_from:
        try:
            start_date = LOCAL_TZ.localize(datetime.strptime(date_from, '%Y-%m-%d'))
        except ValueError:
            start_date = None

    if date_to:
        try:
            end_date = LOCAL_TZ.localize(
                datetime.strptime(date_to, '%Y-%m-%d').replace(
                    hour=23, minute=59, second=59, microsecond=999999
                )
            )
        except ValueError:
            end_date = None

    if start_date or end_date:
        if start_date and not end_date:
            end_date = now
        if end_date and not start_date:
            start_date = end_date - timedelta(days=7)

        total_hours = (end_date - start_date).total_seconds() / 3600
        interval = 'hour' if total_hours <= 24 else 'day'
    else:
        if period == 'yesterday':
            yesterday = now - timedelta(days=1)
            start_date = yesterday.replace(hour=0, minute=0, second=0, microsecond=0)
            end_date = yesterday.replace(hour=23, minute=59, second=59, microsecond=999999)
            interval = 'hour'
        elif period == 'week':
            start_date = now - timedelta(days=7)
            end_date = now
        elif period == 'month':
            start_date = now - timedelta(days=30)
            end_date = now
        else:
            start_date = now.replace(hour=0, minute=0, second=0, microsecond=0)
            end_date = now
            interval = 'hour'

    return start_date, end_date, interval


def get_period_label(period, start_date, end_date):
    if period == 'custom':
        return f"{start_date.strftime('%d.%m.%Y')} - {end_date.strftime('%d.%m.%Y')}"
    elif period == 'today':
        return 'Today'
    elif period == 'yesterday':
        return 'Yesterday'
    elif period == 'week':
        return 'Last 7 days'
    elif period == 'month':
        return 'Last 30 days'
    return period


def get_consumption_chart_data(transactions, start_date, end_date, interval):
    labels = []
    data = []
    step = timedelta(hours=1) if interval == 'hour' else timedelta(days=1)
    label_format = '%H:%M' if interval == 'hour' else '%d.%m'

    if interval == 'hour':
        current = start_date.replace(minute=0, second=0, microsecond=0)
    else:
        current = start_date.replace(hour=0, minute=0, second=0, microsecond=0)

    deductions = transactions.filter(transaction_type=InventoryTransaction.TransactionType.DEDUCTION)
    while current <= end_date:
        bucket_end = current + step
        labels.append(current.strftime(label_format))
        count = deductions.filter(created_at__gte=current, created_at__lt=bucket_end).count()
        data.append(count)
        current = bucket_end

    return {
        'labels': labels,
        'datasets': [{
            'label': 'Deductions',
            'data': data,
            'borderColor': '#ef4444',
            'backgroundColor': 'rgba(239, 68, 68, 0.15)',
            'tension': 0.4,
            'fill': True,
        }]
    }
