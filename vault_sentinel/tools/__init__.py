from .registry import Tool, ToolKind, ToolRegistry, ToolSet
from .vault_tools import build_vault_tools

__all__ = ["Tool", "ToolKind", "ToolRegistry", "ToolSet", "build_vault_tools"]
