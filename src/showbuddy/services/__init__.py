"""
Services package exports
"""
from showbuddy.services.catalog_service import ShowingService
from showbuddy.services.inventory_service import SeatInventory
from showbuddy.services.ledger_service import BookingDetails, BookingLedger
from showbuddy.services.reservation_service import ReservationCoordinator
from showbuddy.services.payment_gateway import (
    MockPaymentGateway,
    PaymentGateway,
    get_payment_gateway,
)
from showbuddy.services.expiry_worker import ExpiryWorker, start_expiry_worker, stop_expiry_worker

__all__ = [
    "ShowingService",
    "SeatInventory",
    "BookingDetails",
    "BookingLedger",
    "ReservationCoordinator",
    "MockPaymentGateway",
    "PaymentGateway",
    "get_payment_gateway",
    "ExpiryWorker",
    "start_expiry_worker",
    "stop_expiry_worker",
]
