"""
Feedback notifier: pushes command outcomes to connected clients
"""
