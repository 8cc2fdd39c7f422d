"""
Practice calendar sync test suite
"""
