"""
Infrastructure services: queue, stores, caches, adapter and real-time channel
"""
