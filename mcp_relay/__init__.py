# MCP Relay - serverless-style Model Context Protocol server
# Streams replies over SSE while client messages arrive on a separate leg

__version__ = "0.1.0"

# Re-export commonly used components for convenience
from mcp_relay.config import (
    RelaySettings,
    RelayStrategyName,
    Backend,
    RegistryBackend,
    InvokerBackend,
    ConfigurationError,
    settings_from_env,
)
from mcp_relay.factory import (
    RelayBundle,
    create_bundle,
    create_bundle_from_env,
    create_memory_bundle,
)

__all__ = [
    "__version__",
    # Config
    "RelaySettings",
    "RelayStrategyName",
    "Backend",
    "RegistryBackend",
    "InvokerBackend",
    "ConfigurationError",
    "settings_from_env",
    # Factory
    "RelayBundle",
    "create_bundle",
    "create_bundle_from_env",
    "create_memory_bundle",
]
