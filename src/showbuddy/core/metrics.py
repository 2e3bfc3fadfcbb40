"""
Prometheus metrics for monitoring
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import time
from functools import wraps
import logging

logger = logging.getLogger(__name__)

# ==================== Hold Metrics ====================

holds_created_total = Counter(
    'showbuddy_holds_created_total',
    'Total seat holds created'
)

hold_conflicts_total = Counter(
    'showbuddy_hold_conflicts_total',
    'Hold attempts rejected because a seat was taken'
)

holds_released_total = Counter(
    'showbuddy_holds_released_total',
    'Holds that ended without a booking',
    ['reason']  # abandoned, payment_failed, expired, compensation
)

hold_duration_seconds = Histogram(
    'showbuddy_hold_duration_seconds',
    'Time to place a seat hold',
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0]
)

# ==================== Booking Metrics ====================

bookings_confirmed_total = Counter(
    'showbuddy_bookings_confirmed_total',
    'Total bookings confirmed'
)

bookings_cancelled_total = Counter(
    'showbuddy_bookings_cancelled_total',
    'Total bookings cancelled'
)

bookings_completed_total = Counter(
    'showbuddy_bookings_completed_total',
    'Total bookings completed after the show'
)

booking_confirmation_duration_seconds = Histogram(
    'showbuddy_booking_confirmation_duration_seconds',
    'Time from payment proof to booking record',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0]
)

payment_failures_total = Counter(
    'showbuddy_payment_failures_total',
    'Payments declined or not verifiable',
    ['reason']
)


def track_time(metric: Histogram):
    """Decorator to track execution time of a coroutine"""
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                metric.observe(time.perf_counter() - start_time)
        return wrapper
    return decorator


def get_metrics():
    """Get current metrics in Prometheus format"""
    return generate_latest(), CONTENT_TYPE_LATEST
