"""
clientpulse - scheduled client reminders with exactly-once delivery.
"""

__version__ = "0.1.0"
__logo__ = "⏰"
