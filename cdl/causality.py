"""
Direct-dependency analysis of a composite block.

Nodes of the DependencyGraph are connectors, identified by
(instance, connector) with instance None for the block's own connectors.
Edges are of two sorts:

1. Connection edges, from the source connector of a connect() to its sink.
2. Feed-through edges inside an instance, from an input to every output
   that depends on it within the same evaluation instant, as declared by
   the block type's direct_dependencies.

State-holding blocks (delays, integrators, samplers) declare no
feed-through, so feedback loops through them are not cycles of this
graph. Any cycle that remains is an algebraic loop.

Example:
    >>> graph = DependencyGraph.from_block(block)
    >>> [format_cycle(c) for c in graph.find_cycles()]
    [['loop1.y', 'loop2.u', 'loop2.y', 'loop1.u']]
"""

from __future__ import annotations

from collections import deque
from typing import Optional

from cdl.ir.model import CompositeBlock

Node = tuple[Optional[str], str]


def node_name(node: Node) -> str:
    instance, connector = node
    return connector if instance is None else f"{instance}.{connector}"


def format_cycle(cycle: list[Node]) -> list[str]:
    return [node_name(n) for n in cycle]


class DependencyGraph:
    """Directed graph of same-instant signal dependencies."""

    def __init__(self):
        self.nodes: list[Node] = []
        self._successors: dict[Node, list[Node]] = {}
        self._rank: dict[Node, tuple[int, int]] = {}
        self._instance_outputs: set[Node] = set()
        self.connection_edges: list[tuple[Node, Node]] = []
        self.feedthrough_edges: list[tuple[Node, Node]] = []

    def add_node(self, node: Node, rank: tuple[int, int], instance_output: bool = False) -> None:
        if node in self._successors:
            return
        self.nodes.append(node)
        self._successors[node] = []
        self._rank[node] = rank
        if instance_output:
            self._instance_outputs.add(node)

    def add_edge(self, source: Node, target: Node, feedthrough: bool = False) -> None:
        successors = self._successors[source]
        if target in successors:
            return
        successors.append(target)
        if feedthrough:
            self.feedthrough_edges.append((source, target))
        else:
            self.connection_edges.append((source, target))

    def successors(self, node: Node) -> list[Node]:
        return list(self._successors.get(node, ()))

    @property
    def edges(self) -> list[tuple[Node, Node]]:
        return [(s, t) for s in self.nodes for t in self._successors[s]]

    def __len__(self) -> int:
        return len(self.nodes)

    @classmethod
    def from_block(cls, block: CompositeBlock) -> DependencyGraph:
        """
        Build the graph of a composite block.

        Node order (own inputs, then each instance's connectors in
        declaration order, then own outputs) makes traversal and reported
        cycles deterministic.
        """
        graph = cls()
        for i, decl in enumerate(block.inputs):
            graph.add_node((None, decl.name), (-1, i))
        for position, inst in enumerate(block.instances.values()):
            for i, decl in enumerate(inst.block_type.connectors):
                graph.add_node(
                    (inst.name, decl.name), (position, i), instance_output=decl.is_output
                )
        for i, decl in enumerate(block.outputs):
            graph.add_node((None, decl.name), (len(block.instances), i))

        for conn in block.connections:
            source, sink = conn.source.node, conn.sink.node
            if source in graph._successors and sink in graph._successors:
                graph.add_edge(source, sink)

        for inst in block.instances.values():
            for out in inst.block_type.outputs:
                for inp in inst.block_type.feeds_through(out.name):
                    graph.add_edge((inst.name, inp), (inst.name, out.name), feedthrough=True)
        return graph

    # ==================== Cycles ====================

    def _rotate(self, cycle: list[Node]) -> list[Node]:
        # Start at the first output of the earliest declared instance on the cycle
        candidates = [n for n in cycle if n in self._instance_outputs] or cycle
        start = min(candidates, key=lambda n: self._rank[n])
        i = cycle.index(start)
        return cycle[i:] + cycle[:i]

    def find_cycles(self) -> list[list[Node]]:
        """
        Cycles found by an iterative depth-first search.

        Every back edge closes one cycle, reported as the path from the
        back edge's target to its source. Cycles that are rotations of
        one another are reported once.
        """
        white, gray, black = 0, 1, 2
        color = {n: white for n in self.nodes}
        cycles: list[list[Node]] = []
        seen: set[tuple[Node, ...]] = set()

        for root in self.nodes:
            if color[root] != white:
                continue
            color[root] = gray
            path = [root]
            stack = [iter(self._successors[root])]
            while stack:
                advanced = False
                for succ in stack[-1]:
                    if color[succ] == gray:
                        cycle = self._rotate(path[path.index(succ) :])
                        if tuple(cycle) not in seen:
                            seen.add(tuple(cycle))
                            cycles.append(cycle)
                    elif color[succ] == white:
                        color[succ] = gray
                        path.append(succ)
                        stack.append(iter(self._successors[succ]))
                        advanced = True
                        break
                if not advanced:
                    color[path.pop()] = black
                    stack.pop()
        return cycles

    def has_cycle(self) -> bool:
        return bool(self.find_cycles())

    def strongly_connected_components(self) -> list[list[Node]]:
        """
        Strongly connected components (Tarjan's algorithm).

        Components with more than one node, or a self edge, are the
        connector groups involved in algebraic loops.
        """
        index_counter = [0]
        stack: list[Node] = []
        lowlink: dict[Node, int] = {}
        index: dict[Node, int] = {}
        on_stack: set[Node] = set()
        sccs: list[list[Node]] = []

        def strongconnect(node: Node) -> None:
            index[node] = lowlink[node] = index_counter[0]
            index_counter[0] += 1
            stack.append(node)
            on_stack.add(node)

            for successor in self._successors[node]:
                if successor not in index:
                    strongconnect(successor)
                    lowlink[node] = min(lowlink[node], lowlink[successor])
                elif successor in on_stack:
                    lowlink[node] = min(lowlink[node], index[successor])

            if lowlink[node] == index[node]:
                scc: list[Node] = []
                while True:
                    w = stack.pop()
                    on_stack.discard(w)
                    scc.append(w)
                    if w == node:
                        break
                sccs.append(scc)

        for node in self.nodes:
            if node not in index:
                strongconnect(node)
        return sccs

    def loop_nodes(self) -> set[Node]:
        """Nodes that lie on some cycle."""
        result: set[Node] = set()
        for scc in self.strongly_connected_components():
            if len(scc) > 1 or scc[0] in self._successors[scc[0]]:
                result.update(scc)
        return result

    def reachable(self, start: Node) -> set[Node]:
        """Nodes reachable from `start` (excluding `start` unless on a cycle)."""
        seen: set[Node] = set()
        queue = deque(self._successors.get(start, ()))
        while queue:
            node = queue.popleft()
            if node in seen:
                continue
            seen.add(node)
            queue.extend(self._successors[node])
        return seen


def derive_direct_dependencies(
    block: CompositeBlock, graph: Optional[DependencyGraph] = None
) -> frozenset[tuple[str, str]]:
    """
    Feed-through of a composite block as seen from an enclosing scope.

    Returns the (output, input) pairs of the block's own connectors where
    the output is reachable from the input in the dependency graph.
    """
    if graph is None:
        graph = DependencyGraph.from_block(block)
    outputs = {c.name for c in block.outputs}
    pairs = set()
    for decl in block.inputs:
        for instance, connector in graph.reachable((None, decl.name)):
            if instance is None and connector in outputs:
                pairs.add((connector, decl.name))
    return frozenset(pairs)
