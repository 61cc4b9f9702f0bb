from django.views.decorators.csrf import csrf_exempt
from rest_framework.decorators import api_view
from rest_framework.response import Response

from ..services.order_service import OrderService
from stock.views import handle_service_error


@csrf_exempt
@api_view(["POST"])
def complete_order(request, order_id):
    try:
        result = OrderService.complete_order(
            tenant_id=request.headers.get("X-Tenant-ID"),
            order_id=order_id,
            user_id=request.headers.get("X-User-ID") or request.data.get("user_id"),
        )
        return Response(result)
    except Exception as e:
        return handle_service_error(e)
