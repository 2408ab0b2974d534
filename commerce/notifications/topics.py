# Topics Kafka publiés par le service commandes
ORDER_CREATED = "order.created"
ORDER_UPDATED = "order.updated"
ORDER_CANCELLED = "order.cancelled"
ORDER_RETURNED = "order.returned"
ORDER_REFUND_REQUIRED = "order.refund_required"
DISPATCH_STATUS_UPDATED = "dispatch.status.updated"
INVOICE_GENERATE = "invoice.generate"
CART_UPDATED = "cart.updated"
CART_CHECKED_OUT = "cart.checked_out"
