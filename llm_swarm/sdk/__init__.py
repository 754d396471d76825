"""
SDK for llm-swarm.

Provides the MiniMax gateway client and the quota-gated swarm service.
"""

from .minimax_client import GatewayError, MinimaxClient
from .swarm import ErrorKind, SwarmService, ToolResponse

__all__ = ["ErrorKind", "GatewayError", "MinimaxClient", "SwarmService", "ToolResponse"]
