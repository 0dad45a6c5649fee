"""Error taxonomy for graph definition, compilation, binding and config loading."""


class OpGraphError(Exception):
    """Base class for every error raised by opgraph."""


class DefinitionError(OpGraphError, ValueError):
    """Invalid node, shape or variable definition."""


class CompileError(OpGraphError):
    """Graph compilation failed; the graph definition must be fixed."""


class CyclicGraphError(CompileError):
    """The predecessor edges of the graph contain a cycle."""


class DuplicateNameError(CompileError, DefinitionError):
    """Two distinct nodes share one name."""


class ShapeMismatchError(CompileError):
    """An operator's shape inference rule rejected its operand shapes."""


class OperandKindError(CompileError, TypeError):
    """An operator received an operand of the wrong tensor kind."""


class UnknownTargetError(CompileError):
    """A target node or target index is not owned by the graph."""


class RuntimeBindingError(OpGraphError):
    """Runtime tensors do not match the compiled plan."""


class TensorMapKeyError(OpGraphError, KeyError):
    """Missing or duplicate TensorMap entries."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages verbatim.
        return str(self.args[0]) if self.args else ""


class MissingKeyError(TensorMapKeyError):
    """No tensor is stored under the requested name."""


class DuplicateKeyError(TensorMapKeyError):
    """A tensor is already stored under the requested name."""


class TensorKindMismatchError(MissingKeyError, RuntimeBindingError):
    """The stored tensor kind differs from the requested one."""


class ConfigError(OpGraphError, ValueError):
    """Malformed or inconsistent group config input."""
