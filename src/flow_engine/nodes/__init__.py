"""Built-in node types"""

from .builtin import register_builtin_nodes

__all__ = ["register_builtin_nodes"]
