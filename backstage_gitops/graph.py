"""Resource dependency graph of synthesized stacks.

CloudFormation infers apply order from the references between resources.
This module makes that order explicit: every resource of a synthesized
template becomes a ``ResourceIntent`` carrying its dependency edges
(``DependsOn``, ``Ref``, ``Fn::GetAtt`` and ``Fn::Sub`` references), and
``ResourceGraph`` evaluates the topological apply order. Two graphs built
from the same configuration can be diffed to check that a re-synthesis
declares nothing new.
"""

import logging
import re
from dataclasses import dataclass, field
from graphlib import CycleError, TopologicalSorter
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Set

logger = logging.getLogger(__name__)

_SUB_REFERENCE = re.compile(r"\$\{([A-Za-z0-9]+)(?:\.[A-Za-z0-9.]+)?\}")


@dataclass(frozen=True)
class ResourceIntent:
    """A declared resource and the logical ids it must wait for."""

    logical_id: str
    resource_type: str
    depends_on: FrozenSet[str] = frozenset()
    properties: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)


@dataclass
class GraphDiff:
    """Difference between two resource graphs."""

    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when both graphs declare the same resources."""
        return not (self.added or self.removed or self.changed)


def _collect_references(value: Any, known: Set[str], found: Set[str]) -> None:
    """Walk a template fragment collecting references to known logical ids."""
    if isinstance(value, dict):
        for key, inner in value.items():
            if key == "Ref" and isinstance(inner, str):
                if inner in known:
                    found.add(inner)
            elif key == "Fn::GetAtt":
                target = inner[0] if isinstance(inner, list) else str(inner).split(".")[0]
                if target in known:
                    found.add(target)
            elif key == "Fn::Sub":
                template = inner[0] if isinstance(inner, list) else inner
                if isinstance(template, str):
                    for name in _SUB_REFERENCE.findall(template):
                        if name in known:
                            found.add(name)
                if isinstance(inner, list) and len(inner) > 1:
                    _collect_references(inner[1], known, found)
            else:
                _collect_references(inner, known, found)
    elif isinstance(value, list):
        for item in value:
            _collect_references(item, known, found)


class ResourceGraph:
    """Directed acyclic graph of resource intents."""

    def __init__(self, intents: Iterable[ResourceIntent]):
        self.intents: Dict[str, ResourceIntent] = {}
        for intent in intents:
            if intent.logical_id in self.intents:
                raise ValueError(f"Duplicate resource: {intent.logical_id}")
            self.intents[intent.logical_id] = intent

        for intent in self.intents.values():
            missing = intent.depends_on - self.intents.keys()
            if missing:
                raise ValueError(
                    f"{intent.logical_id} depends on undeclared resources: {sorted(missing)}"
                )

    @classmethod
    def from_template(cls, template: Mapping[str, Any]) -> "ResourceGraph":
        """Build a graph from a synthesized CloudFormation template."""
        resources = template.get("Resources", {})
        known = set(resources)
        intents = []
        for logical_id, resource in resources.items():
            edges: Set[str] = set()

            depends_on = resource.get("DependsOn", [])
            if isinstance(depends_on, str):
                depends_on = [depends_on]
            edges.update(d for d in depends_on if d in known)

            _collect_references(resource.get("Properties", {}), known, edges)
            edges.discard(logical_id)

            intents.append(
                ResourceIntent(
                    logical_id=logical_id,
                    resource_type=resource.get("Type", ""),
                    depends_on=frozenset(edges),
                    properties=resource.get("Properties", {}),
                )
            )
        return cls(intents)

    def __len__(self) -> int:
        return len(self.intents)

    def __contains__(self, logical_id: str) -> bool:
        return logical_id in self.intents

    def dependencies_of(self, logical_id: str) -> FrozenSet[str]:
        """Direct dependencies of a resource."""
        return self.intents[logical_id].depends_on

    def _sorter(self) -> TopologicalSorter:
        sorter = TopologicalSorter()
        for logical_id, intent in self.intents.items():
            sorter.add(logical_id, *intent.depends_on)
        return sorter

    def levels(self) -> List[List[str]]:
        """Group resources into batches that can be applied in parallel.

        Every resource appears after all of its dependencies; resources in
        the same batch are independent of each other.

        Raises:
            ValueError: If the graph contains a dependency cycle.
        """
        sorter = self._sorter()
        try:
            sorter.prepare()
        except CycleError as e:
            raise ValueError(f"Dependency cycle between resources: {e.args[1]}") from e

        batches = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready())
            batches.append(ready)
            sorter.done(*ready)
        return batches

    def apply_order(self) -> List[str]:
        """Deterministic topological order, dependencies first."""
        return [logical_id for batch in self.levels() for logical_id in batch]


def diff_graphs(before: ResourceGraph, after: ResourceGraph) -> GraphDiff:
    """Compare two graphs by logical id, type, edges and properties."""
    diff = GraphDiff()
    diff.added = sorted(after.intents.keys() - before.intents.keys())
    diff.removed = sorted(before.intents.keys() - after.intents.keys())
    for logical_id in sorted(before.intents.keys() & after.intents.keys()):
        old, new = before.intents[logical_id], after.intents[logical_id]
        if old != new or old.properties != new.properties:
            diff.changed.append(logical_id)
    return diff


def stack_apply_order(assembly) -> List[str]:
    """Order the stacks of a cloud assembly so dependencies deploy first.

    Args:
        assembly: A ``cx_api.CloudAssembly`` returned by ``App.synth()``.

    Returns:
        Stack names in deploy order.
    """
    sorter = TopologicalSorter()
    for artifact in assembly.stacks:
        upstream = [
            dep.stack_name
            for dep in artifact.dependencies
            if hasattr(dep, "stack_name")
        ]
        sorter.add(artifact.stack_name, *upstream)
    try:
        return list(sorter.static_order())
    except CycleError as e:
        raise ValueError(f"Dependency cycle between stacks: {e.args[1]}") from e
