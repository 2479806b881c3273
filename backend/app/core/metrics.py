"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-importing the module (e.g. under test reloads) must not register twice
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Order issuing
orders_created_counter = _counter(
    'payments_orders_created_total',
    'Total number of gateway orders created',
    ['item_type']
)

order_failures_counter = _counter(
    'payments_order_failures_total',
    'Total number of rejected or failed order requests',
    ['reason']
)

amount_tampering_counter = _counter(
    'payments_amount_tampering_total',
    'Order requests whose client amount diverged from the server price'
)

# Webhook reconciliation
webhook_events_counter = _counter(
    'payments_webhook_events_total',
    'Total number of webhook events received',
    ['event_type', 'outcome']
)

signature_failures_counter = _counter(
    'payments_signature_failures_total',
    'Total number of rejected signatures',
    ['source']
)

entitlement_failures_counter = _counter(
    'payments_entitlement_failures_total',
    'Captured payments whose entitlement grant failed'
)
