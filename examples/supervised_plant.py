"""
Example: resolve a composite block from the example library, inspect it,
flatten it and export it to JSON.

Run from the repository root:

    python examples/supervised_plant.py
"""

from pathlib import Path

from cdl import CDLError, flatten
from cdl.io import export_block_json, load_catalog
from cdl.io.loader import library_loader
from cdl.resolver import CompositeResolver

HERE = Path(__file__).parent


def create_resolver() -> CompositeResolver:
    """
    Resolver over the example library.

    The catalog lists the elementary blocks (gain, limiter, unit delay, ...)
    the library is built from; composite blocks are read from
    examples/Library on first use.
    """
    catalog = load_catalog(HERE / "cdl_catalog.json")
    return CompositeResolver(catalog, library_loader([HERE], use_modelica_path=False))


LOOP = """
within Library;
block Loop
  CDL.Interfaces.RealOutput y;
  CDL.Reals.MultiplyByParameter loop1(k=1);
  CDL.Reals.MultiplyByParameter loop2(k=1);
equation
  connect(loop1.y, loop2.u);
  connect(loop2.y, loop1.u);
  connect(loop2.y, y);
end Loop;
"""


if __name__ == "__main__":
    resolver = create_resolver()

    # Resolve the block; Library.Controls.Supervisor is built on the way
    plant_type = resolver.resolve("Library.Plant")
    plant = plant_type.composite

    print(plant)
    print()

    print("Direct feed-through:")
    for connector in plant_type.outputs:
        inputs = plant_type.feeds_through(connector.name)
        print(f"  {connector.name:10s} <- {', '.join(inputs) if inputs else '(none)'}")

    print()
    print(flatten(plant))

    print()
    supervisor = resolver.symbols.lookup("Library.Controls.Supervisor").composite
    print("Supervisor documentation:")
    print(f"  {supervisor.documentation.get('info', '')}")
    print("Supervisor tags:")
    for inst in supervisor.instances.values():
        for tag in inst.tags:
            print(f"  {inst.name}: {tag.kind.value} {tag.raw}")
    for connector in supervisor.connectors:
        for tag in connector.tags:
            print(f"  {connector.name}: {tag.kind.value} {tag.raw}")

    output = HERE / "Plant.json"
    export_block_json(plant, output)
    print()
    print(f"Exported to {output}")

    # A block with an algebraic loop is rejected
    print()
    try:
        resolver.compile_source(LOOP)
    except CDLError as e:
        print(f"{e.kind.value}: {e}")
