"""
Outbound API clients.
"""

from synapse.clients.anthropic_client import AnthropicClient
from synapse.clients.base_client import BaseAPIClient
from synapse.clients.jira_client import JiraClient

__all__ = ["BaseAPIClient", "AnthropicClient", "JiraClient"]
