"""
Batch import → Field rules → Human-in-the-loop review → Reconciliation → Export

Cleans imported payroll batches cell by cell, flags duplicates against prior
transactions, keeps an undoable review history and fills missing data by
messaging the payee.
"""

__version__ = "0.1.0"
