"""
price-moderation: contribution moderation and client trust lifecycle.

Clients submit observed prices, administrators approve or reject them,
approved prices overwrite the shared price table, and repeated rejections
or administrative action block or blacklist the submitting client.
"""

__version__ = "0.1.0"
