"""Operator registry mapping operator names to node constructors."""

from typing import Any, Callable, Dict, List, Optional, Type

from ..errors import DefinitionError
from ..nodes import OpNode


class OpRegistry:
    """
    Registry for operator node classes.
    Lets graphs be described by operator name and rebuilt from that description.
    """

    def __init__(self):
        """Initialize an empty registry."""
        self.ops: Dict[str, Type[OpNode]] = {}

    def register(self, name: str, op_cls: Type[OpNode]):
        """
        Register an operator class.

        Args:
            name: Operator name, unique within the registry
            op_cls: OpNode subclass
        """
        if name in self.ops:
            raise DefinitionError(f"Duplicate registered name: {name}.")
        if not (isinstance(op_cls, type) and issubclass(op_cls, OpNode)):
            raise DefinitionError(f"{op_cls!r} is not an OpNode subclass")
        self.ops[name] = op_cls

    def get(self, name: str) -> Optional[Type[OpNode]]:
        return self.ops.get(name)

    def create(self, name: str, *args: Any, **kwargs: Any) -> OpNode:
        """
        Construct an operator node by name.

        Args:
            name: Registered operator name
            args, kwargs: Forwarded to the operator constructor

        Returns:
            The new node
        """
        op_cls = self.ops.get(name)
        if op_cls is None:
            raise DefinitionError(f"Unregistered name: {name}.")
        return op_cls(*args, **kwargs)

    def names(self) -> List[str]:
        return sorted(self.ops)

    def __contains__(self, name: str) -> bool:
        return name in self.ops


# Global registry instance
_global_registry = OpRegistry()


def get_registry() -> OpRegistry:
    """Get the global operator registry."""
    return _global_registry


def register_op(name: str) -> Callable[[Type[OpNode]], Type[OpNode]]:
    """Class decorator registering an operator in the global registry."""
    def decorator(op_cls: Type[OpNode]) -> Type[OpNode]:
        op_cls.op_type = name
        _global_registry.register(name, op_cls)
        return op_cls
    return decorator
