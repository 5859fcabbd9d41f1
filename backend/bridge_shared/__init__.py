"""
Shared library for the vendor bridge services (gateway, worker, notifier)
"""

__version__ = "0.1.0"
