"""Read-only query selectors."""

from stock_kernel.selectors.batch_selector import BatchSelector
from stock_kernel.selectors.delivery_selector import DeliverySelector
from stock_kernel.selectors.movement_selector import MovementSelector

__all__ = ["BatchSelector", "DeliverySelector", "MovementSelector"]
