"""
API module for the calendar sync backend
"""
