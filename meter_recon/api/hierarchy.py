"""
Meter hierarchy endpoint.

GET /v1/sites/{site_id}/hierarchy returns the site's meter tree as a flat,
display-ordered list of nodes. Sites without connection records get a
hierarchy derived from meter types (council/bulk at the top, check meters
below them, tenants below those).

CHANGELOG:
- 2026-10-18: Initial creation

TODO:
- None
"""

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from meter_recon.api.deps import DataStore
from meter_recon.services.data_fetching import StoreError
from meter_recon.services.hierarchy import (
    build_connections_map,
    build_parent_info_map,
    calculate_indent_level,
    derive_connections_from_indents,
    find_cycles,
    get_all_descendants,
    get_hierarchy_depth,
    get_indent_by_meter_type,
    get_leaf_meter_ids,
    get_meter_type_priority,
    get_parent_meter_ids,
    is_meter_visible,
)

router = APIRouter(prefix="/v1", tags=["hierarchy"])


class HierarchyNode(BaseModel):
    """One meter in the hierarchy listing."""

    meter_id: str
    meter_number: str
    meter_type: str
    depth: int
    indent_level: int
    parent_meter_number: str | None = None
    child_ids: list[str] = Field(default_factory=list)
    descendant_count: int = 0
    is_leaf: bool = True
    visible: bool = True


class HierarchyResponse(BaseModel):
    """Hierarchy of a site."""

    site_id: str
    derived: bool
    nodes: list[HierarchyNode]
    leaf_meter_ids: list[str]
    parent_meter_ids: list[str]
    cycles: list[list[str]]


@router.get("/sites/{site_id}/hierarchy", response_model=HierarchyResponse)
async def get_site_hierarchy(
    site_id: str,
    store: DataStore,
    expanded: list[str] = Query(default=[], description="Expanded meter ids"),
) -> HierarchyResponse:
    """Return the meter hierarchy of a site.

    Args:
        site_id: Site identifier (path parameter).
        store: Meter store (injected).
        expanded: Meter ids expanded in the caller's tree view; drives the
            ``visible`` flag of each node.

    Returns:
        HierarchyResponse with nodes ordered by meter type, then number.

    Raises:
        HTTPException: 404 if the site does not exist.
        HTTPException: 503 if the store cannot be read.
    """
    try:
        site = await store.fetch_site(site_id)
        if site is None:
            raise HTTPException(status_code=404, detail=f"Site '{site_id}' not found")
        meters = await store.fetch_site_meters(site_id)
        meter_ids = {m.id for m in meters}
        connections = [
            c
            for c in await store.fetch_connections(sorted(meter_ids))
            if c.parent_meter_id in meter_ids and c.child_meter_id in meter_ids
        ]
    except StoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    ordered = sorted(
        meters, key=lambda m: (get_meter_type_priority(m.meter_type), m.meter_number),
    )
    derived = not connections
    if derived:
        connections = derive_connections_from_indents(
            ordered, {m.id: get_indent_by_meter_type(m.meter_type) for m in ordered},
        )

    connections_map = build_connections_map(connections)
    parent_info = build_parent_info_map(connections, meters)
    expanded_set = set(expanded)

    nodes = []
    for meter in ordered:
        children = connections_map.get(meter.id, [])
        nodes.append(
            HierarchyNode(
                meter_id=meter.id,
                meter_number=meter.meter_number,
                meter_type=meter.meter_type,
                depth=get_hierarchy_depth(meter.id, connections_map),
                indent_level=calculate_indent_level(meter.id, connections),
                parent_meter_number=parent_info.get(meter.id),
                child_ids=list(children),
                descendant_count=len(get_all_descendants(meter.id, connections_map)),
                is_leaf=not children,
                visible=is_meter_visible(meter.id, connections_map, expanded_set),
            ),
        )

    return HierarchyResponse(
        site_id=site_id,
        derived=derived,
        nodes=nodes,
        leaf_meter_ids=get_leaf_meter_ids([m.id for m in ordered], connections_map),
        parent_meter_ids=get_parent_meter_ids(connections_map),
        cycles=find_cycles(connections_map),
    )
