"""
Utility module

Path resolution and small parsing helpers.
"""
