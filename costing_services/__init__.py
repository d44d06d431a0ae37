"""
costing_services -- Stateful services over the layer ledger.

Write side:
    LayerStore            append layers, decrement on consumption
    FifoConsumptionEngine cost a sale line oldest-layer-first
    SalePostingService    record a sale line and cost it together
    ProductCatalog        product master and fallback costs

Read side:
    ValuationCalculator      on-hand snapshots, aging, inventory positions
    ProfitabilityAggregator  COGS/profit rollups and ABC classification
    InventoryAnalysisService velocity and purchase suggestions
    CostingReports           dict adapters for report views

Every service takes a Session by constructor injection and never commits.
"""

from costing_services.catalog import ProductCatalog
from costing_services.consumption_service import FifoConsumptionEngine
from costing_services.inventory_analysis import InventoryAnalysisService
from costing_services.layer_store import LayerStore
from costing_services.profitability_service import ProfitabilityAggregator
from costing_services.report_cache import ReportCache
from costing_services.reporting import CostingReports
from costing_services.retry import retry_on_conflict
from costing_services.sale_posting import PostedSaleLine, SalePostingService
from costing_services.valuation_service import InventoryPosition, ValuationCalculator

__all__ = [
    "CostingReports",
    "FifoConsumptionEngine",
    "InventoryAnalysisService",
    "InventoryPosition",
    "LayerStore",
    "PostedSaleLine",
    "ProductCatalog",
    "ProfitabilityAggregator",
    "ReportCache",
    "SalePostingService",
    "ValuationCalculator",
    "retry_on_conflict",
]
