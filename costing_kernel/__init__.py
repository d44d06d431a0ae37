"""
Costing Kernel

Persistent core of the FIFO inventory costing engine:
- Append-only ledger of purchase cost layers per product
- Write-once consumption records (the COGS audit trail)
- Typed exceptions, structured logging, injectable clock
"""

__version__ = "0.1.0"
