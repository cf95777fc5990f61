"""Prometheus metrics for the application"""
from prometheus_client import Counter, Histogram, REGISTRY

# Webhook metrics
try:
    webhook_events_counter = Counter(
        'payhook_webhook_events_total',
        'Total number of webhook deliveries by outcome',
        ['event_type', 'outcome']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('payhook_webhook_events_total')

try:
    webhook_failures_counter = Counter(
        'payhook_webhook_failures_total',
        'Total number of failed webhook deliveries by reason',
        ['reason']
    )
except ValueError:
    webhook_failures_counter = REGISTRY._names_to_collectors.get('payhook_webhook_failures_total')

try:
    webhook_processing_histogram = Histogram(
        'payhook_webhook_processing_seconds',
        'Time spent processing webhook events',
        ['event_type'],
        buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 25)
    )
except ValueError:
    webhook_processing_histogram = REGISTRY._names_to_collectors.get('payhook_webhook_processing_seconds')

try:
    side_effects_counter = Counter(
        'payhook_webhook_side_effects_total',
        'Outcome of secondary side effects',
        ['step', 'outcome']
    )
except ValueError:
    side_effects_counter = REGISTRY._names_to_collectors.get('payhook_webhook_side_effects_total')

try:
    logging_failures_counter = Counter(
        'payhook_webhook_logging_failures_total',
        'Processing log writes that failed or timed out'
    )
except ValueError:
    logging_failures_counter = REGISTRY._names_to_collectors.get('payhook_webhook_logging_failures_total')

try:
    webhook_retries_counter = Counter(
        'payhook_webhook_retries_total',
        'Retries performed by the retry orchestrator',
        ['operation']
    )
except ValueError:
    webhook_retries_counter = REGISTRY._names_to_collectors.get('payhook_webhook_retries_total')
