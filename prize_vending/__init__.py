"""
Prize vending service for the hold-to-win kiosk.

Turns a measured hold duration into a physical prize: tier classification,
slot allocation, serial vending protocol and durable outcome logging.
"""

__version__ = "1.0.0"
