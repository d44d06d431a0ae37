"""Pure domain types for the costing kernel (zero I/O)."""
