"""
todoscan - Marker comment scanning with incremental workspace updates.
"""

__version__ = "0.1.0"
