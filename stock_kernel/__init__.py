"""
Stock Kernel

Day-indexed stock movement ledger and batch-level stock store for a
multi-branch distribution back office:
- Continuous opening/closing chain with forward propagation
- FIFO batch consumption with all-or-nothing semantics
- Cached aggregate stock kept in step with batches
"""

__version__ = "0.1.0"
