"""
Utility helpers (logging, retry) shared by the vendor bridge services
"""
