"""Library Ledger MCP tools.

Tools perform actions with side effects; read-only catalog browsing is
exposed as resources instead.
"""

from .circulation import circulation_tools

all_tools = circulation_tools

__all__ = [
    "all_tools",
    "circulation_tools",
]
