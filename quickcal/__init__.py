"""
QuickCal: natural-language and image input to Google Calendar events
"""

__version__ = "0.1.0"
