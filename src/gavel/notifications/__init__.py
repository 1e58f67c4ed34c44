"""
User-facing enforcement notices.
"""
