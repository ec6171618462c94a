"""Checkout orders -- schemas, status table, financial reconciler and persistence.

Provides the CheckoutOrder domain model (integer-cent money), the order
status enumeration with its CRM name table, pure tax/discount/rounding
functions, address normalization, SQLAlchemy models and OrderRepository.
"""
