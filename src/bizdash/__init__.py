"""
bizdash - business metrics dashboard service.

This package stores timestamped business metrics, serves filtered reads and
summaries, and syncs metrics from an external provider. Requests arrive as
JSON-RPC 2.0 messages over stdio.
"""

__version__ = "0.1.0"
