"""
Block diagram visualization with Graphviz.

Requires pydot to be installed: pip install pydot
or install cdl with visualization extras: pip install cdl[visualization]
"""

from typing import Optional

from cdl.causality import DependencyGraph
from cdl.ir import CompositeBlock, Endpoint

try:
    import pydot

    PYDOT_AVAILABLE = True
except ImportError:
    PYDOT_AVAILABLE = False
    pydot = None

LOOP_COLOR = "red"


def _require_pydot() -> None:
    if not PYDOT_AVAILABLE:
        raise ImportError(
            "pydot is required for graph visualization. "
            "Install it with: pip install pydot "
            "or: pip install cdl[visualization]"
        )


def _node_id(block: CompositeBlock, endpoint: Endpoint) -> str:
    if endpoint.instance is not None:
        return endpoint.instance
    decl = block.get_connector(endpoint.connector)
    prefix = "__in_" if decl is not None and decl.is_input else "__out_"
    return prefix + endpoint.connector


def block_graph(block: CompositeBlock, direction: str = "LR", highlight_loops: bool = True):
    """
    Graph of a composite block: one node per instance and per own connector,
    one edge per connection labelled with the connected connectors.

    Args:
        block: Built composite block
        direction: Graphviz rankdir
        highlight_loops: Draw connections on algebraic loops in red

    Returns:
        pydot.Dot
    """
    _require_pydot()

    graph = pydot.Dot(graph_name=block.name.replace(".", "_"), graph_type="digraph")
    graph.set_graph_defaults(rankdir=direction, label=block.name)

    for decl in block.inputs:
        graph.add_node(pydot.Node(f"__in_{decl.name}", label=decl.name, shape="cds"))
    for inst in block.instances.values():
        label = f"{inst.name}\\n{inst.type_name.rpartition('.')[2]}"
        style = "rounded" if inst.block_type.is_elementary else "rounded,bold"
        graph.add_node(pydot.Node(inst.name, label=label, shape="box", style=style))
    for decl in block.outputs:
        graph.add_node(pydot.Node(f"__out_{decl.name}", label=decl.name, shape="cds"))

    component = {}
    if highlight_loops:
        dependencies = DependencyGraph.from_block(block)
        loop_nodes = dependencies.loop_nodes()
        for i, scc in enumerate(dependencies.strongly_connected_components()):
            component.update((node, i) for node in scc if node in loop_nodes)

    for conn in block.connections:
        edge = pydot.Edge(
            _node_id(block, conn.source),
            _node_id(block, conn.sink),
            label=f"{conn.source.connector} -> {conn.sink.connector}",
        )
        source_scc = component.get(conn.source.node)
        if source_scc is not None and source_scc == component.get(conn.sink.node):
            edge.set("color", LOOP_COLOR)
        graph.add_edge(edge)

    return graph


def to_dot(block: CompositeBlock, direction: str = "LR") -> str:
    """Graphviz source of the block diagram."""
    return block_graph(block, direction=direction).to_string()


def draw_block(
    block: CompositeBlock,
    filename: Optional[str] = None,
    fmt: str = "png",
    direction: str = "LR",
):
    """
    Render the block diagram with Graphviz.

    Returns the rendered bytes if no filename is given, otherwise writes
    the file.
    """
    graph = block_graph(block, direction=direction)
    if filename is None:
        return graph.create(format=fmt)
    graph.write(filename, format=fmt)
