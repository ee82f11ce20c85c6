"""
Configuration for the Casbin MongoDB adapter.

AdapterOptions collects everything needed to build a MongoAdapter. It can be
created directly, from a plain mapping (e.g. parsed application settings) or
from environment variables.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from casbin_mongo_adapter.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "casbindb"
DEFAULT_COLLECTION = "casbin"
ENV_PREFIX = "CASBIN_MONGO_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def _parse_bool(key: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        config_key=key,
        expected="one of: 1, true, yes, on, 0, false, no, off",
        received=raw,
    )


@dataclass
class AdapterOptions:
    """
    Configuration for MongoAdapter.

    Attributes:
        uri: MongoDB connection string. Required.
        database: Database holding the policy collection.
        collection: Collection holding one document per rule.
        filtered: Whether load_filtered_policy honours its filter.
        debug: Turn the adapter's logger up to DEBUG.
        client_options: Extra keyword arguments for AsyncMongoClient
            (e.g. {"serverSelectionTimeoutMS": 2000}).

    Example:
        >>> options = AdapterOptions(
        ...     uri="mongodb://localhost:27017",
        ...     collection="policies",
        ...     filtered=True,
        ... )
    """
    uri: str
    database: str = DEFAULT_DATABASE
    collection: str = DEFAULT_COLLECTION
    filtered: bool = False
    debug: bool = False
    client_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.uri:
            raise ConfigurationError(
                config_key="uri",
                expected="a MongoDB connection string",
                reason="you must provide a MongoDB URI to connect to",
            )
        if not self.database:
            raise ConfigurationError(config_key="database", expected="a database name")
        if not self.collection:
            raise ConfigurationError(config_key="collection", expected="a collection name")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AdapterOptions:
        """
        Create options from a mapping.

        ``option`` is accepted as an alias for ``client_options``.

        Raises:
            ConfigurationError: If the mapping has unknown keys or no uri.
        """
        values = dict(data)
        if "option" in values:
            values["client_options"] = values.pop("option") or {}

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ConfigurationError(
                config_key=unknown[0],
                expected=f"one of: {', '.join(sorted(known))}",
                reason=f"unknown option(s): {', '.join(unknown)}",
            )
        values.setdefault("uri", "")
        return cls(**values)

    @classmethod
    def from_env(
        cls,
        prefix: str = ENV_PREFIX,
        environ: Mapping[str, str] | None = None,
    ) -> AdapterOptions:
        """
        Create options from environment variables.

        Reads ``<prefix>URI``, ``<prefix>DATABASE``, ``<prefix>COLLECTION``,
        ``<prefix>FILTERED`` and ``<prefix>DEBUG``.

        Args:
            prefix: Variable name prefix.
            environ: Mapping to read instead of os.environ.
        """
        env = os.environ if environ is None else environ

        values: dict[str, Any] = {"uri": env.get(f"{prefix}URI", "")}
        if f"{prefix}DATABASE" in env:
            values["database"] = env[f"{prefix}DATABASE"]
        if f"{prefix}COLLECTION" in env:
            values["collection"] = env[f"{prefix}COLLECTION"]
        for name in ("filtered", "debug"):
            key = f"{prefix}{name.upper()}"
            if key in env:
                values[name] = _parse_bool(key, env[key])

        logger.debug(f"Loaded adapter options from environment (prefix={prefix})")
        return cls(**values)
