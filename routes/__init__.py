"""Routes package initializer."""

from .delivery_routes import register_delivery_routes
from .late_orders_routes import register_late_orders_routes
from .log_routes import register_log_routes
from .purchase_order_routes import register_purchase_order_routes

__all__ = [
    "register_purchase_order_routes",
    "register_delivery_routes",
    "register_late_orders_routes",
    "register_log_routes",
]
