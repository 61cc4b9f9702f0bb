import logging

from django.db import transaction, OperationalError
from django.utils import timezone

from main.models import Order
from stock.models import StockReference
from stock.services import (
    BaseService, ProductionService, RecipeService,
    NotFoundError, BusinessRuleError, ConcurrencyConflictError,
)
from stock.services.base_service import resolve_actor
from stock.services.transaction_service import InventoryTransactionService

logger = logging.getLogger(__name__)


class OrderService:

    @staticmethod
    def _quantities_by_product(order):
        """Sum item quantities per product, keeping first-seen order."""
        quantities = {}
        for item in order.items.order_by('id'):
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
        return quantities

    @staticmethod
    def complete_order(tenant_id, order_id, user_id=None):
        """
        Complete an order and consume the materials of every recipe-backed product.

        Either every product is produced and the order is marked completed, or
        nothing changes. Products without an active recipe, or with a zero
        quantity, are skipped.
        """
        tenant_id = BaseService.require_tenant(tenant_id)

        try:
            with transaction.atomic():
                order = Order.objects.for_tenant(tenant_id).select_for_update().filter(id=order_id).first()
                if not order:
                    raise NotFoundError("Order", order_id)

                if order.status == Order.Status.COMPLETED:
                    raise BusinessRuleError("Order is already completed", "order_completed")
                if order.status == Order.Status.CANCELED:
                    raise BusinessRuleError("Canceled orders cannot be completed", "order_canceled")

                user_id = resolve_actor(tenant_id, user_id)
                reference = StockReference.order(order.id)

                produced = []
                skipped = []
                for product_id, quantity in OrderService._quantities_by_product(order).items():
                    if quantity <= 0:
                        skipped.append(product_id)
                        continue

                    recipe = RecipeService.get_active_for_product(tenant_id, product_id)
                    if recipe is None:
                        skipped.append(product_id)
                        continue

                    transactions = ProductionService.produce(recipe, quantity, user_id, reference)
                    produced.append({
                        'product_id': product_id,
                        'recipe_id': recipe.id,
                        'quantity': quantity,
                        'transactions': [InventoryTransactionService.serialize(t) for t in transactions],
                    })

                order.status = Order.Status.COMPLETED
                order.completed_at = timezone.now()
                order.save(update_fields=['status', 'completed_at', 'updated_at'])
        except OperationalError as e:
            logger.error("Completing order %s aborted by a storage conflict: %s", order_id, e)
            raise ConcurrencyConflictError(details={'order_id': order_id}) from e

        logger.info(
            "Order %s completed: produced %s product(s), skipped %s",
            order.id, len(produced), skipped
        )

        return {
            'success': True,
            'message': 'Order completed',
            'order_id': order.id,
            'status': order.status,
            'production': produced,
            'skipped_product_ids': skipped,
        }
