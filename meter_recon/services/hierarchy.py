"""
Meter hierarchy queries over parent -> child connection maps.

A connections map is ``{parent_id: [child_id, ...]}``. Connection data is
entered by operators and is not guaranteed to be acyclic, so every
traversal carries a visited set; a cycle shortens the walk and is logged
at DEBUG, it never raises. ``find_cycles`` reports each cycle once.

CHANGELOG:
- 2026-10-18: Share meter type aliases; log traversal cycles at DEBUG
- 2026-10-18: Log cycles met during traversal and add find_cycles
- 2026-10-18: Initial creation

TODO:
- None
"""

import logging
from collections.abc import Iterable, Mapping, Sequence

from meter_recon.schemas import Meter, MeterConnection

logger = logging.getLogger(__name__)

ConnectionsMap = Mapping[str, Sequence[str]]

# Short spellings stored by older site configurations.
METER_TYPE_ALIASES = {
    "council": "council_meter",
    "bulk": "bulk_meter",
    "check": "check_meter",
    "tenant": "tenant_meter",
    "solar": "solar_meter",
}

METER_TYPE_PRIORITY = {
    "council_meter": 0,
    "bulk_meter": 1,
    "check_meter": 2,
    "tenant_meter": 3,
    "other": 4,
}
METER_TYPE_INDENT = {
    "council_meter": 0,
    "bulk_meter": 0,
    "check_meter": 1,
    "tenant_meter": 2,
    "other": 3,
}


# ---------------------------------------------------------------------------
# Building maps
# ---------------------------------------------------------------------------


def build_connections_map(connections: Iterable[MeterConnection]) -> dict[str, list[str]]:
    """Group connection edges into ``{parent_id: [child_id, ...]}``.

    Children keep the order of the input edges.
    """
    connections_map: dict[str, list[str]] = {}
    for conn in connections:
        connections_map.setdefault(conn.parent_meter_id, []).append(conn.child_meter_id)
    return connections_map


def build_parent_info_map(
    connections: Iterable[MeterConnection],
    meters: Iterable[Meter],
) -> dict[str, str]:
    """Map each child meter id to its parent's meter number.

    Edges whose parent is not in *meters* are ignored.
    """
    numbers = {m.id: m.meter_number for m in meters}
    parent_info: dict[str, str] = {}
    for conn in connections:
        parent_number = numbers.get(conn.parent_meter_id)
        if parent_number:
            parent_info[conn.child_meter_id] = parent_number
    return parent_info


def derive_connections_from_indents(
    meters: Sequence[Meter],
    indent_levels: Mapping[str, int],
) -> list[MeterConnection]:
    """Infer parent links from display order and indent levels.

    Each meter with indent ``n > 0`` is attached to the nearest preceding
    meter whose indent is exactly ``n - 1``. Meters without an entry in
    *indent_levels* are at indent 0. A meter with no such predecessor gets
    no parent.

    Args:
        meters: Meters in display order.
        indent_levels: Meter id -> indent level.

    Returns:
        Derived connection edges, in meter order.
    """
    connections: list[MeterConnection] = []
    for index, meter in enumerate(meters):
        indent = indent_levels.get(meter.id, 0)
        if indent <= 0:
            continue
        for previous in reversed(meters[:index]):
            if indent_levels.get(previous.id, 0) == indent - 1:
                connections.append(
                    MeterConnection(parent_meter_id=previous.id, child_meter_id=meter.id),
                )
                break
    return connections


# ---------------------------------------------------------------------------
# Depth and ordering
# ---------------------------------------------------------------------------


def get_hierarchy_depth(
    meter_id: str,
    connections_map: ConnectionsMap,
    _path: frozenset[str] = frozenset(),
) -> int:
    """Return the longest distance from *meter_id* down to a leaf.

    Leaves have depth 0. The visited set is per recursion path, so a meter
    reachable through two branches is counted in both, while revisiting a
    meter already on the current path (a cycle) contributes 0.
    """
    if meter_id in _path:
        logger.debug("Cycle in meter connections at meter %s", meter_id)
        return 0

    children = connections_map.get(meter_id) or []
    if not children:
        return 0

    path = _path | {meter_id}
    return 1 + max(get_hierarchy_depth(child, connections_map, path) for child in children)


def sort_meters_by_depth(
    meters: Iterable[Meter],
    connections_map: ConnectionsMap,
) -> list[Meter]:
    """Order meters leaves-first for bottom-up aggregation.

    Ascending depth; equal depths are ordered by meter number descending.
    """
    by_number = sorted(meters, key=lambda m: m.meter_number, reverse=True)
    depths = {m.id: get_hierarchy_depth(m.id, connections_map) for m in by_number}
    return sorted(by_number, key=lambda m: depths[m.id])


def calculate_indent_level(
    meter_id: str,
    connections: Sequence[MeterConnection],
    _visited: frozenset[str] = frozenset(),
) -> int:
    """Number of ancestors above *meter_id*, following the first parent edge."""
    if meter_id in _visited:
        logger.debug("Cycle in meter connections at meter %s", meter_id)
        return 0

    parent = next((c for c in connections if c.child_meter_id == meter_id), None)
    if parent is None:
        return 0
    return 1 + calculate_indent_level(
        parent.parent_meter_id, connections, _visited | {meter_id},
    )


# ---------------------------------------------------------------------------
# Tree queries
# ---------------------------------------------------------------------------


def _find_parent(meter_id: str, connections_map: ConnectionsMap) -> str | None:
    for parent_id, children in connections_map.items():
        if meter_id in children:
            return parent_id
    return None


def is_meter_visible(
    meter_id: str,
    connections_map: ConnectionsMap,
    expanded_meters: set[str] | frozenset[str],
) -> bool:
    """Return True when every ancestor of *meter_id* is expanded.

    A meter without a parent is always visible. An ancestor chain that
    loops back on itself is treated as visible once every meter on the
    loop has been checked.
    """
    visited: set[str] = set()
    current = meter_id
    while True:
        if current in visited:
            logger.debug("Cycle in meter connections at meter %s", current)
            return True
        visited.add(current)

        parent_id = _find_parent(current, connections_map)
        if parent_id is None:
            return True
        if parent_id not in expanded_meters:
            return False
        current = parent_id


def get_all_descendants(meter_id: str, connections_map: ConnectionsMap) -> list[str]:
    """Return every meter below *meter_id*, each once.

    Direct children come first, then each child's subtree in order.
    *meter_id* itself is never included, even on a cycle.
    """
    visited = {meter_id}
    descendants: list[str] = []

    def collect(parent_id: str) -> None:
        children = [c for c in connections_map.get(parent_id) or [] if c not in visited]
        visited.update(children)
        descendants.extend(children)
        for child in children:
            collect(child)

    collect(meter_id)
    return descendants


def get_leaf_meter_ids(meter_ids: Iterable[str], connections_map: ConnectionsMap) -> list[str]:
    """Return the ids in *meter_ids* that have no children."""
    return [m for m in meter_ids if not connections_map.get(m)]


def get_parent_meter_ids(connections_map: ConnectionsMap) -> list[str]:
    """Return the ids that have at least one child."""
    return [parent_id for parent_id, children in connections_map.items() if children]


def find_cycles(connections_map: ConnectionsMap) -> list[list[str]]:
    """Return each distinct cycle in the map as a list of meter ids.

    A cycle is reported once, starting at the first of its meters reached
    by the traversal. A self-loop is a one-element cycle.
    """
    cycles: list[list[str]] = []
    seen: set[frozenset[str]] = set()
    on_path: list[str] = []
    state: dict[str, str] = {}

    def visit(node: str) -> None:
        state[node] = "active"
        on_path.append(node)
        for child in connections_map.get(node) or []:
            if state.get(child) == "active":
                cycle = on_path[on_path.index(child):]
                key = frozenset(cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(cycle)
            elif child not in state:
                visit(child)
        on_path.pop()
        state[node] = "done"

    for node in list(connections_map):
        if node not in state:
            visit(node)
    return cycles


# ---------------------------------------------------------------------------
# Meter type ordering
# ---------------------------------------------------------------------------


def normalize_meter_type(meter_type: str | None) -> str:
    """Lower-case *meter_type* and map short spellings to the ``*_meter`` form."""
    lowered = (meter_type or "").strip().lower()
    return METER_TYPE_ALIASES.get(lowered, lowered)


def get_meter_type_priority(meter_type: str | None) -> int:
    """Sort key for meter types: council, bulk, check, tenant, other, unknown."""
    return METER_TYPE_PRIORITY.get(normalize_meter_type(meter_type), 5)


def get_indent_by_meter_type(meter_type: str | None) -> int:
    """Default display indent for a meter type when no hierarchy exists."""
    return METER_TYPE_INDENT.get(normalize_meter_type(meter_type), 3)
