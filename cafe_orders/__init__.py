"""
                Cafe Orders

Ordering backend for a small restaurant: menu browsing, order
placement with verification codes, live order tracking and a
staff dashboard API for menu, shop status and order lifecycle.
"""

__version__ = "1.0.0"
