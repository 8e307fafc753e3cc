"""
PriceWatch - price intelligence backend for Indian e-commerce platforms.
"""

__version__ = "1.0.0"
