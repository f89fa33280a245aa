"""
                Restaurant POS Core

Order-lifecycle and table-concurrency backend for a restaurant
point-of-sale: table locks, order ledger, settlement and audit emission
on top of a transactional relational store.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
