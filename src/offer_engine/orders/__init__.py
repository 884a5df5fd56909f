"""Order fulfillment lifecycle."""

from offer_engine.orders.engine import OrderFulfillmentEngine, archived_label

__all__ = ["OrderFulfillmentEngine", "archived_label"]
