"""
Ingestion gateway: validates vendor mutation requests and enqueues them
"""
