"""
Core utilities: configuration, logging, errors, retry and security.
"""
