"""
OAuth provider drivers and integration service.
"""
