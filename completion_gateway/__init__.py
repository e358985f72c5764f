"""Multi-provider AI completion gateway."""

from .config import GatewaySettings
from .llm import CompletionGateway, create_gateway, get_gateway, unwrap

__all__ = ["GatewaySettings", "CompletionGateway", "create_gateway", "get_gateway", "unwrap"]
