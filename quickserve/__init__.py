"""
                QuickServe Ordering Backend

Order lifecycle service for a two-site cafeteria: customers build a cart,
submit an order and receive a pickup token; staff advance orders through
the pending -> preparing -> ready -> completed pipeline.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
