"""ORM models for the costing kernel."""

from costing_kernel.models.consumption_record import ConsumptionRecordModel
from costing_kernel.models.inventory_layer import InventoryLayerModel
from costing_kernel.models.product import ProductModel
from costing_kernel.models.sale_line import SaleLineModel

__all__ = [
    "ConsumptionRecordModel",
    "InventoryLayerModel",
    "ProductModel",
    "SaleLineModel",
]
