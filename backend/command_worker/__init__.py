"""
Vendor command worker: executes queued vendor commands against the legacy system
"""
