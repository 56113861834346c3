"""
Domain models.
"""
