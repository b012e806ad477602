"""
Resolve which ManageBac and Nexquare configs a sync run covers.
"""

from __future__ import annotations

import logging

from integrations import repository as integrations_repository
from nodes import repository as nodes_repository

logger = logging.getLogger(__name__)


async def get_configs_for_scope(
    *,
    node_ids: list[str] | None = None,
    include_descendants: bool = False,
    all: bool = False,
    config_ids_mb: list[int] | None = None,
    config_ids_nex: list[int] | None = None,
) -> dict[str, list[dict]]:
    """
    Return `{"mb": [...], "nex": [...]}` active config rows.

    Per source: explicit config ids win, then `all`, then the node scope
    (optionally widened to descendants). No scope means no configs.
    """
    scope_nodes: list[str] = []
    if node_ids and not all and not (config_ids_mb and config_ids_nex):
        scope_nodes = await nodes_repository.descendant_ids(node_ids) if include_descendants else list(node_ids)

    if config_ids_mb:
        mb = await integrations_repository.list_active_managebac_configs(config_ids_mb)
    elif all:
        mb = await integrations_repository.list_active_managebac_configs()
    elif scope_nodes:
        mb = await integrations_repository.list_managebac_configs_for_nodes(scope_nodes)
    else:
        mb = []

    if config_ids_nex:
        nex = await integrations_repository.list_active_nexquare_configs(config_ids_nex)
    elif all:
        nex = await integrations_repository.list_active_nexquare_configs()
    elif scope_nodes:
        nex = await integrations_repository.list_nexquare_configs_for_nodes(scope_nodes)
    else:
        nex = []

    logger.info(
        "sync_scope_resolved nodes=%s include_descendants=%s all=%s mb=%s nex=%s",
        len(scope_nodes),
        include_descendants,
        all,
        len(mb),
        len(nex),
    )
    return {"mb": mb, "nex": nex}
