"""
                QR Table Notify

Order notification relay for QR table ordering: signed single-use
auth tokens, request admission checks and Pushover delivery.

Version: 1.0.0
"""

__version__ = "1.0.0"
