"""
Utility modules for the calendar sync backend.
"""
