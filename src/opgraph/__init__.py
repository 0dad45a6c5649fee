"""
opgraph - computation graph compilation and execution for parametric models.

Build a graph of instance, variable and operator nodes, compile it into an
ordered plan, bind per-batch data in an OpContext and run forward/backward.
"""

__version__ = "0.1.0"

# Core imports
from .config import EngineConfig, get_default_config
from .errors import (
    OpGraphError,
    DefinitionError,
    CompileError,
    CyclicGraphError,
    DuplicateNameError,
    ShapeMismatchError,
    OperandKindError,
    UnknownTargetError,
    RuntimeBindingError,
    TensorMapKeyError,
    MissingKeyError,
    DuplicateKeyError,
    TensorKindMismatchError,
    ConfigError,
)
from .shape import Shape, BATCH, BATCH_PLACEHOLDER
from .group_config import (
    GroupConfigItem,
    MAX_GROUP_ID,
    load_group_config,
    parse_group_config,
    guess_group_config,
    get_lr_group_config,
    is_fm_group_config,
    check_fm_group_config,
    get_total_embedding_col,
)
from .feature_id import make_feature_id, get_group_id, make_feature_id18, get_group_id18
from .tensor_map import TensorKind, TensorMap, DenseTensor, SparseRowMatrix, CSRInstance
from .initializer import Initializer
from .nodes import GraphNode, InstanceNode, VariableNode, OpNode
from .graph import Graph, CompiledPlan, compile
from .op_context import OpContext, grad_name, GRAD_SUFFIX

# Operator management
from .ops import OpRegistry, get_registry, register_op
from .ops import *  # noqa: F401,F403
from . import ops
from . import creators

__all__ = [
    # Core functions
    'compile',
    'load_group_config',
    'parse_group_config',
    'guess_group_config',
    'get_lr_group_config',
    'is_fm_group_config',
    'check_fm_group_config',
    'get_total_embedding_col',
    'make_feature_id',
    'get_group_id',
    'make_feature_id18',
    'get_group_id18',
    'grad_name',
    'get_registry',
    'register_op',
    'get_default_config',

    # Classes
    'Graph',
    'CompiledPlan',
    'OpContext',
    'GraphNode',
    'InstanceNode',
    'VariableNode',
    'OpNode',
    'Shape',
    'TensorKind',
    'TensorMap',
    'DenseTensor',
    'SparseRowMatrix',
    'CSRInstance',
    'Initializer',
    'GroupConfigItem',
    'OpRegistry',
    'EngineConfig',

    # Errors
    'OpGraphError',
    'DefinitionError',
    'CompileError',
    'CyclicGraphError',
    'DuplicateNameError',
    'ShapeMismatchError',
    'OperandKindError',
    'UnknownTargetError',
    'RuntimeBindingError',
    'TensorMapKeyError',
    'MissingKeyError',
    'DuplicateKeyError',
    'TensorKindMismatchError',
    'ConfigError',

    # Constants
    'BATCH',
    'BATCH_PLACEHOLDER',
    'MAX_GROUP_ID',
    'GRAD_SUFFIX',

    # Submodules
    'ops',
    'creators',

    # Version
    '__version__',
]
__all__ += ops.__all__
