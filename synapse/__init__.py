"""
Synapse: turn meeting notes into Jira issues.
"""

__version__ = "2.0.0"
