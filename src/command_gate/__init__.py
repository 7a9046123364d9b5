"""Human-approved shell command gateway with MCP tool proxying."""

__version__ = "0.1.0"
