"""Graph ownership, compilation into ordered plans, and parameter initialization."""

import logging
import warnings
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import torch

from .config import get_default_config
from .errors import CyclicGraphError, DuplicateNameError, UnknownTargetError
from .nodes import GraphNode, InstanceNode, OpNode, VariableNode
from .tensor_map import TensorKind, TensorMap


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledPlan:
    """
    Immutable execution plan for a set of targets.

    ops lists operators so that each appears after all of its predecessors;
    backward lists the operators on gradient paths from the loss, in
    reverse order.
    """
    targets: Tuple[GraphNode, ...]
    loss: Optional[GraphNode]
    nodes: Tuple[GraphNode, ...]  # Dependency closure in forward order
    ops: Tuple[OpNode, ...]
    backward: Tuple[OpNode, ...]
    grad_nodes: Tuple[GraphNode, ...]  # Nodes that get a gradient buffer
    instances: Tuple[InstanceNode, ...]
    variables: Tuple[VariableNode, ...]

    @property
    def has_backward(self) -> bool:
        return self.loss is not None

    def trainable_variables(self) -> List[VariableNode]:
        return [n for n in self.grad_nodes if n.is_variable]

    def summary(self) -> Dict[str, int]:
        """Count of plan entries per node type."""
        counts: Dict[str, int] = {}
        for node in self.nodes:
            counts[node.node_type] = counts.get(node.node_type, 0) + 1
        return counts


def topological_order(roots: Iterable[GraphNode]) -> List[GraphNode]:
    """
    Post-order depth-first traversal from roots, predecessors in declaration
    order, each node emitted once.

    Raises:
        CyclicGraphError: the predecessor edges reachable from roots form a cycle
    """
    order: List[GraphNode] = []
    # node -> 1 while on the stack, 2 once emitted
    state: Dict[GraphNode, int] = {}
    for root in roots:
        if state.get(root) == 2:
            continue
        state[root] = 1
        stack = [(root, iter(root.inputs))]
        while stack:
            node, it = stack[-1]
            for inp in it:
                s = state.get(inp)
                if s == 1:
                    path = [n for n, _ in stack]
                    cycle = path[path.index(inp):] + [inp]
                    raise CyclicGraphError(
                        "Cycle detected: " + " -> ".join(n.name or n.node_type for n in cycle)
                    )
                if s is None:
                    state[inp] = 1
                    stack.append((inp, iter(inp.inputs)))
                    break
            else:
                stack.pop()
                state[node] = 2
                order.append(node)
    return order


class Graph:
    """
    Owner of graph nodes.

    compile() takes ownership of every node reachable from the targets,
    validates the graph and returns the plan for all targets. Plans for
    subsets of the targets are built and cached by get_plan().
    """

    def __init__(self):
        self._nodes: List[GraphNode] = []
        self._name_to_node: Dict[str, GraphNode] = {}
        self._targets: List[GraphNode] = []
        self._plans: Dict[Tuple[Tuple[int, ...], int], CompiledPlan] = {}
        self._auto_name_counter = 0

    @property
    def nodes(self) -> List[GraphNode]:
        return list(self._nodes)

    @property
    def targets(self) -> List[GraphNode]:
        return list(self._targets)

    @property
    def compiled(self) -> bool:
        return bool(self._targets)

    def target(self, i: int) -> GraphNode:
        if i < 0 or i >= len(self._targets):
            raise UnknownTargetError(f"Invalid target index: {i}.")
        return self._targets[i]

    def find_node(self, name: str) -> Optional[GraphNode]:
        return self._name_to_node.get(name)

    def variable_nodes(self) -> List[VariableNode]:
        return [n for n in self._nodes if n.is_variable]

    def instance_nodes(self) -> List[InstanceNode]:
        return [n for n in self._nodes if n.is_instance]

    def compile(self,
                targets: Sequence[GraphNode],
                loss: Union[int, GraphNode, None] = None) -> CompiledPlan:
        """
        Register, order and validate the graph rooted at targets.

        Args:
            targets: Output nodes, in the order get_plan() indexes them
            loss: Optional loss target (index into targets or the node)
                  for which a backward plan is built

        Returns:
            The plan for all targets
        """
        targets = list(targets)
        if not targets:
            raise UnknownTargetError("No target to compile.")
        for node in targets:
            if not isinstance(node, GraphNode):
                raise UnknownTargetError(f"Target is not a node: {node!r}")
            if node.graph is not None and node.graph is not self:
                raise UnknownTargetError(f"Target {node.name} is owned by another graph.")
        loss_index = self._loss_index(targets, loss)

        order = topological_order(targets)
        new_nodes = self._check_ownership(order)
        for node in order:
            if node.is_op:
                node.refresh_shape()
        self._commit(new_nodes)

        self._targets = targets
        self._plans.clear()
        plan = self.get_plan(range(len(targets)), loss_index)
        logger.debug("Compiled graph: %d nodes, %d ops, %d backward ops",
                     len(plan.nodes), len(plan.ops), len(plan.backward))
        return plan

    def get_plan(self,
                 target_indices: Iterable[int],
                 loss_index: Optional[int] = -1) -> CompiledPlan:
        """
        Get the (cached) plan for a subset of the compiled targets.

        Args:
            target_indices: Indices into the compiled targets
            loss_index: Index of the loss target, or -1/None for forward only
        """
        indices = tuple(target_indices)
        if loss_index is None:
            loss_index = -1
        if not self._targets:
            raise UnknownTargetError("Graph has not been compiled.")
        if not indices:
            raise UnknownTargetError("No target index given.")
        for i in indices + ((loss_index,) if loss_index >= 0 else ()):
            if i < 0 or i >= len(self._targets):
                raise UnknownTargetError(
                    f"Invalid target index: {i}, graph has {len(self._targets)} targets."
                )
        key = (indices, loss_index)
        plan = self._plans.get(key)
        if plan is None:
            targets = [self._targets[i] for i in indices]
            loss = self._targets[loss_index] if loss_index >= 0 else None
            if loss is not None and loss not in targets:
                targets.append(loss)
            plan = self._build_plan(targets, loss)
            self._plans[key] = plan
        return plan

    def init_param(self, param: TensorMap, seed: Optional[int] = None) -> TensorMap:
        """
        Create and initialize every variable missing from a parameter store.

        Dense variables are filled by their initializer; sparse variables
        start empty and carry the initializer for rows created later.
        """
        if seed is None:
            seed = get_default_config().seed
        generator = torch.Generator()
        if seed is not None:
            generator.manual_seed(seed)
        else:
            generator.seed()

        for node in self.variable_nodes():
            if node.name in param:
                param.get(node.name, node.tensor_kind)
                continue
            tensor = param.insert(node.name, node.tensor_kind)
            if node.tensor_kind is TensorKind.SRM:
                tensor.set_col(node.shape[1])
                tensor.initializer = node.initializer
                tensor.init_param1 = node.init_param1
                tensor.init_param2 = node.init_param2
            else:
                tensor.resize(node.shape)
                node.initializer.fill(tensor.data, node.init_param1, node.init_param2,
                                      generator)
        return param

    def _loss_index(self, targets: List[GraphNode], loss) -> int:
        if loss is None:
            return -1
        if isinstance(loss, GraphNode):
            for i, t in enumerate(targets):
                if t is loss:
                    return i
            raise UnknownTargetError(f"Loss {loss.name} is not a target.")
        if loss < 0 or loss >= len(targets):
            raise UnknownTargetError(f"Invalid loss index: {loss}.")
        return loss

    def _check_ownership(self, order: List[GraphNode]) -> List[GraphNode]:
        """Return nodes not yet registered, checking owners and names."""
        new_nodes = []
        seen: Dict[str, GraphNode] = {}
        for node in order:
            if node.graph is self:
                continue
            if node.graph is not None:
                raise UnknownTargetError(
                    f"Node {node.name or node.node_type} is owned by another graph."
                )
            if node.name:
                other = self._name_to_node.get(node.name) or seen.get(node.name)
                if other is not None and other is not node:
                    raise DuplicateNameError(f"Duplicate node name: {node.name}.")
                seen[node.name] = node
            new_nodes.append(node)
        return new_nodes

    def _auto_name(self, node: GraphNode, taken) -> str:
        while True:
            self._auto_name_counter += 1
            name = f"_{node.node_type}_{self._auto_name_counter}"
            if name not in self._name_to_node and name not in taken:
                return name

    def _commit(self, new_nodes: List[GraphNode]) -> None:
        taken = {n.name for n in new_nodes if n.name}
        for node in new_nodes:
            if not node.name:
                node.name = self._auto_name(node, taken)
            node.graph = self
            node.index = len(self._nodes)
            self._nodes.append(node)
            self._name_to_node[node.name] = node

    def _build_plan(self, targets: List[GraphNode], loss: Optional[GraphNode]) -> CompiledPlan:
        order = topological_order(targets)
        ops = tuple(n for n in order if n.is_op)
        backward: Tuple[OpNode, ...] = ()
        grad_nodes: Tuple[GraphNode, ...] = ()

        if loss is not None:
            requires: Dict[GraphNode, bool] = {}
            for node in order:
                if node.is_op:
                    requires[node] = node.need_grad and any(requires[i] for i in node.inputs)
                else:
                    requires[node] = node.need_grad
            # A gradient reaches a node only along a path from the loss
            # through nodes that all require one
            flows: Dict[GraphNode, bool] = {n: False for n in order}
            flows[loss] = requires[loss]
            for node in reversed(order):
                if not flows[node]:
                    continue
                for inp in node.inputs:
                    if requires[inp]:
                        flows[inp] = True
            grad_nodes = tuple(n for n in order if flows[n])
            backward = tuple(n for n in reversed(order) if n.is_op and flows[n])
            if not any(n.is_variable for n in grad_nodes):
                warnings.warn(f"Loss {loss.name} does not reach any variable that needs grad")

        return CompiledPlan(
            targets=tuple(targets),
            loss=loss,
            nodes=tuple(order),
            ops=ops,
            backward=backward,
            grad_nodes=grad_nodes,
            instances=tuple(n for n in order if n.is_instance),
            variables=tuple(n for n in order if n.is_variable),
        )


def compile(targets: Sequence[GraphNode],
            loss: Union[int, GraphNode, None] = None) -> Tuple[Graph, CompiledPlan]:
    """
    Main compilation interface.

    Args:
        targets: Output nodes
        loss: Optional loss target

    Returns:
        (graph, plan for all targets)
    """
    graph = Graph()
    plan = graph.compile(targets, loss)
    return graph, plan
