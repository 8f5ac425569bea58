"""
Nested Order Flattening Pipeline

Normalizes nested e-commerce order records, merges them into a keyed
canonical store and projects them to one analysis-ready row per line item.
"""

__version__ = "1.0.0"
