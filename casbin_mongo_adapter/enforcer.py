"""
Enforcer wiring for the Casbin MongoDB adapter.

Most applications want an AsyncEnforcer whose policy already sits in memory.
create_enforcer() opens a MongoAdapter, binds it to a new enforcer and loads
the stored policy in one call.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

import casbin

from casbin_mongo_adapter.adapter import MongoAdapter

if TYPE_CHECKING:
    from casbin.model import Model

    from casbin_mongo_adapter.config import AdapterOptions

logger = logging.getLogger(__name__)


async def create_enforcer(
    model: str | Path | Model,
    options: AdapterOptions,
) -> casbin.AsyncEnforcer:
    """
    Build an AsyncEnforcer backed by MongoDB and load its policy.

    Args:
        model: Path to a model.conf file, or a casbin Model instance.
        options: Adapter configuration.

    Returns:
        An AsyncEnforcer with the stored policy loaded.

    Raises:
        AdapterError: If the adapter cannot connect or the load fails.
            Once connected, the adapter is closed again before any error
            propagates.

    Example:
        >>> enforcer = await create_enforcer(
        ...     "model.conf",
        ...     AdapterOptions(uri="mongodb://localhost:27017"),
        ... )
        >>> enforcer.enforce("alice", "data1", "read")
        True
    """
    if isinstance(model, Path):
        model = str(model)

    adapter = await MongoAdapter.new_adapter(options)
    try:
        enforcer = casbin.AsyncEnforcer(model, adapter)
        await enforcer.load_policy()
    except Exception:
        await adapter.close()
        raise

    logger.info(
        f"Casbin enforcer initialized with MongoDB adapter "
        f"({options.database}.{options.collection})"
    )
    return enforcer
