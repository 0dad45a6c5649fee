"""Per-batch execution context driving forward and backward passes."""

import logging
from typing import Any, Iterable, Optional

import torch

from .config import EngineConfig, get_default_config
from .errors import (
    CompileError,
    MissingKeyError,
    OpGraphError,
    RuntimeBindingError,
    TensorKindMismatchError,
)
from .graph import CompiledPlan, Graph
from .nodes import GraphNode
from .shape import BATCH, Shape
from .tensor_map import TensorKind, TensorMap


logger = logging.getLogger(__name__)

GRAD_SUFFIX = "@grad"


def grad_name(name: str) -> str:
    """Hidden map key of a node's gradient buffer."""
    return name + GRAD_SUFFIX


class OpContext:
    """
    Binds a compiled graph and a parameter store to one batch at a time.

    Call order: init() -> init_op() -> fill inst -> init_forward()
    [-> init_backward()] -> forward() [-> backward()], then keep calling
    forward()/backward() with new instance data. The parameter store is
    only read; operator outputs and gradient buffers live in hidden.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or get_default_config()
        self.graph: Optional[Graph] = None
        self.param: Optional[TensorMap] = None
        self.inst = TensorMap(self.config.torch_dtype, self.config.device)
        self.hidden = TensorMap(self.config.torch_dtype, self.config.device)
        self.plan: Optional[CompiledPlan] = None
        self._batch: Optional[int] = None
        self._forward_ready = False
        self._backward_ready = False

    @property
    def batch_size(self) -> Optional[int]:
        return self._batch

    def mutable_inst(self) -> TensorMap:
        return self.inst

    def init(self, graph: Graph, param: TensorMap) -> None:
        """Bind a graph and a parameter store. Allocates nothing."""
        if graph is not self.graph:
            self.hidden.clear()
            self._batch = None
        self.graph = graph
        self.param = param
        self.plan = None
        self._forward_ready = False
        self._backward_ready = False

    def init_op(self, target_indices: Iterable[int], loss_index: Optional[int] = -1) -> CompiledPlan:
        """
        Select the plan for some of the graph's targets.

        Args:
            target_indices: Indices into the compiled targets
            loss_index: Index of the loss target, or -1/None for forward only
        """
        if self.graph is None:
            raise RuntimeBindingError("OpContext.init() has not been called.")
        try:
            plan = self.graph.get_plan(target_indices, loss_index)
        except CompileError:
            raise
        except OpGraphError as e:
            raise CompileError(str(e)) from e
        self.plan = plan
        self._forward_ready = False
        self._backward_ready = False
        return plan

    def init_forward(self) -> None:
        """Validate instance bindings and size the output tensors."""
        self._require_plan()
        self._batch = self._bind_batch()
        self._check_params()
        for op in self.plan.ops:
            self._hidden_tensor(op.name, TensorKind.TSR).resize(self._resolve(op.shape))
        self._forward_ready = True
        self._backward_ready = False
        logger.debug("init_forward: batch=%s, %d outputs", self._batch, len(self.plan.ops))

    def init_backward(self) -> None:
        """Allocate gradient buffers and zero them."""
        self._require_plan()
        if self.plan.loss is None:
            raise RuntimeBindingError("init_backward() requires a plan with a loss.")
        if not self._forward_ready:
            self.init_forward()
        for node in self.plan.grad_nodes:
            self._alloc_grad(node)
        self._backward_ready = True

    def forward(self) -> None:
        """Run the forward plan in order."""
        self._require_plan()
        if not self._forward_ready:
            raise RuntimeBindingError("init_forward() has not been called.")
        if self.config.validate_bindings:
            batch = self._bind_batch()
            self._check_params()
            if batch != self._batch:
                self._rebind(batch)

        for op in self.plan.ops:
            inputs = [self._read(n) for n in op.inputs]
            op.forward(inputs, self.hidden.get(op.name, TensorKind.TSR).data)

    def backward(self) -> None:
        """Run the backward plan, accumulating gradients from the loss."""
        self._require_plan()
        if not self._backward_ready:
            raise RuntimeBindingError("init_backward() has not been called.")
        plan = self.plan
        for node in plan.grad_nodes:
            self._grad(node).zeros_()
        if not plan.backward:
            return

        self._grad(plan.loss).data.fill_(1)
        grad_set = set(plan.grad_nodes)
        for op in plan.backward:
            inputs = [self._read(n) for n in op.inputs]
            output = self.hidden.get(op.name, TensorKind.TSR).data
            needs = [n in grad_set for n in op.inputs]
            grads = op.backward(inputs, output, self._grad(op).data, needs)
            for inp, need, g in zip(op.inputs, needs, grads):
                if need and g is not None:
                    self._grad(inp).accumulate(g)

    def get_output(self, name: str) -> torch.Tensor:
        """Dense output of the operator named name."""
        return self.hidden.get(name, TensorKind.TSR).data

    def get_grad(self, name: str) -> Any:
        """Gradient buffer of a node: a dense torch tensor or a SparseRowMatrix."""
        g = self.hidden.get(grad_name(name))
        return g.data if g.kind is TensorKind.TSR else g

    def _require_plan(self) -> None:
        if self.plan is None:
            raise RuntimeBindingError("OpContext.init_op() has not been called.")

    def _hidden_tensor(self, name: str, kind: TensorKind):
        if name in self.hidden:
            return self.hidden.get(name, kind)
        return self.hidden.insert(name, kind)

    def _grad(self, node: GraphNode):
        return self.hidden.get(grad_name(node.name))

    def _alloc_grad(self, node: GraphNode) -> None:
        if node.tensor_kind is TensorKind.SRM:
            g = self._hidden_tensor(grad_name(node.name), TensorKind.SRM)
            g.set_col(node.shape[1])
        else:
            g = self._hidden_tensor(grad_name(node.name), TensorKind.TSR)
            g.resize(self._resolve(node.shape))
        g.zeros_()

    def _resolve(self, shape: Shape):
        if shape.has_placeholder:
            if self._batch is None:
                raise RuntimeBindingError(f"Batch size is unbound for shape {shape}.")
            return shape.resolve(self._batch).to_tuple()
        return shape.to_tuple()

    def _rebind(self, batch: Optional[int]) -> None:
        """Resize outputs and gradient buffers for a new batch size."""
        self._batch = batch
        for op in self.plan.ops:
            self.hidden.get(op.name, TensorKind.TSR).resize(self._resolve(op.shape))
        if self._backward_ready:
            for node in self.plan.grad_nodes:
                if node.tensor_kind is TensorKind.TSR:
                    self._grad(node).resize(self._resolve(node.shape))

    def _bind_batch(self) -> Optional[int]:
        """Check instance tensors against their nodes and return the batch size."""
        batch = None
        source = None
        for node in self.plan.instances:
            try:
                tensor = self.inst.get(node.name, node.tensor_kind)
            except TensorKindMismatchError:
                raise
            except MissingKeyError as e:
                raise RuntimeBindingError(f"Instance {node.name} is not bound.") from e

            declared = node.shape
            actual = tuple(tensor.shape)
            if len(actual) != declared.rank:
                raise RuntimeBindingError(
                    f"Instance {node.name}: expected shape {declared}, got {actual}."
                )
            for axis, d in enumerate(declared):
                if d is BATCH:
                    continue
                # Only the row count of a sparse instance is meaningful
                if node.tensor_kind is TensorKind.CSR and axis > 0:
                    continue
                if actual[axis] != d:
                    raise RuntimeBindingError(
                        f"Instance {node.name}: expected shape {declared}, got {actual}."
                    )
            if declared.has_placeholder:
                if batch is None:
                    batch, source = actual[0], node.name
                elif actual[0] != batch:
                    raise RuntimeBindingError(
                        f"Inconsistent batch size: {source} has {batch}, "
                        f"{node.name} has {actual[0]}."
                    )
        return batch

    def _check_params(self) -> None:
        for node in self.plan.variables:
            tensor = self._param(node)
            if node.tensor_kind is TensorKind.TSR and tuple(tensor.shape) != node.shape.to_tuple():
                raise RuntimeBindingError(
                    f"Variable {node.name}: expected shape {node.shape}, got {tuple(tensor.shape)}."
                )
            elif node.tensor_kind is TensorKind.SRM and tensor.col != node.shape[1]:
                raise RuntimeBindingError(
                    f"Variable {node.name}: expected col {node.shape[1]}, got {tensor.col}."
                )

    def _param(self, node: GraphNode):
        if self.param is None:
            raise RuntimeBindingError("No parameter store bound.")
        try:
            return self.param.get(node.name, node.tensor_kind)
        except TensorKindMismatchError:
            raise
        except MissingKeyError as e:
            raise RuntimeBindingError(
                f"Variable {node.name} is not in the parameter store."
            ) from e

    def _read(self, node: GraphNode) -> Any:
        if node.is_op:
            return self.hidden.get(node.name, TensorKind.TSR).data
        if node.is_instance:
            tensor = self.inst.get(node.name, node.tensor_kind)
        else:
            tensor = self._param(node)
        return tensor.data if tensor.kind is TensorKind.TSR else tensor
