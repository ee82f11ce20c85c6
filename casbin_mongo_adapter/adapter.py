"""
MongoDB policy storage for Casbin.

This module provides MongoAdapter, an asyncio adapter that lets a Casbin
AsyncEnforcer keep its policy in a MongoDB collection, one document per rule.

The adapter only translates between Casbin's model and documents; policy
matching stays in Casbin. It talks to MongoDB through PyMongo's native
asyncio client.

Example:
    >>> adapter = await MongoAdapter.new_adapter(
    ...     AdapterOptions(uri="mongodb://localhost:27017")
    ... )
    >>> enforcer = casbin.AsyncEnforcer("model.conf", adapter)
    >>> await enforcer.load_policy()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from casbin import persist
from casbin.persist.adapters.asyncio import AsyncAdapter
from pymongo import ASCENDING, AsyncMongoClient
from pymongo.errors import InvalidURI, OperationFailure, PyMongoError

from casbin_mongo_adapter.config import (
    DEFAULT_COLLECTION,
    DEFAULT_DATABASE,
    AdapterOptions,
)
from casbin_mongo_adapter.exceptions import (
    AdapterConnectionError,
    ConfigurationError,
    OperationError,
)
from casbin_mongo_adapter.rule import INDEX_FIELDS, CasbinRule, RuleFilter

if TYPE_CHECKING:
    from casbin.model import Model
    from pymongo.asynchronous.collection import AsyncCollection
    from pymongo.asynchronous.database import AsyncDatabase

logger = logging.getLogger(__name__)

PACKAGE_LOGGER = "casbin_mongo_adapter"

# Server error code for "ns not found", returned when dropping a missing collection.
NAMESPACE_NOT_FOUND = 26


@contextmanager
def _driver_errors(operation: str) -> Iterator[None]:
    """Translate PyMongo errors raised inside the block into OperationError."""
    try:
        yield
    except PyMongoError as e:
        logger.error(f"{operation} failed: {e}")
        raise OperationError(str(e), operation=operation) from e


class MongoAdapter(AsyncAdapter):
    """
    Casbin adapter storing policy rules in a MongoDB collection.

    Each rule becomes one document::

        {"ptype": "p", "v0": "alice", "v1": "data1", "v2": "read",
         "createdAt": "2024-05-01T12:00:00.000Z",
         "updatedAt": "2024-05-01T12:00:00.000Z"}

    The adapter is created closed. open() (or new_adapter(), or entering it
    as an async context manager) connects, creates lookup indexes and makes
    the data operations available. Calling a data operation while closed
    raises AdapterConnectionError.

    Filtered loading:
        When created with filtered=True, load_filtered_policy() passes its
        filter straight to ``collection.find()``, so any MongoDB query works:

        >>> await enforcer.load_filtered_policy({"ptype": "p", "v0": "alice"})

        With filtered=False the filter is ignored and the full policy loads.

    Attributes:
        database_name: Name of the database holding the collection.
        collection_name: Name of the policy collection.
    """

    def __init__(
        self,
        uri: str,
        database: str = DEFAULT_DATABASE,
        collection: str = DEFAULT_COLLECTION,
        filtered: bool = False,
        debug: bool = False,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        """
        Initialize the adapter without connecting.

        Args:
            uri: MongoDB connection string.
            database: Database name.
            collection: Collection name.
            filtered: Whether load_filtered_policy honours its filter.
            debug: Set the package logger to DEBUG.
            options: Keyword arguments forwarded to AsyncMongoClient.

        Raises:
            ConfigurationError: If uri is empty or the driver rejects it.
        """
        if not uri:
            raise ConfigurationError(
                config_key="uri",
                expected="a MongoDB connection string",
                reason="you must provide a MongoDB URI to connect to",
            )

        if debug:
            logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG)

        self.database_name = database
        self.collection_name = collection
        self._use_filter = filtered
        self._connected = False

        try:
            self._client: AsyncMongoClient = AsyncMongoClient(uri, **dict(options or {}))
        except InvalidURI as e:
            raise ConfigurationError(config_key="uri", reason=str(e)) from e
        except (PyMongoError, TypeError, ValueError) as e:
            key = "options" if options else "uri"
            raise ConfigurationError(config_key=key, reason=str(e)) from e

    @classmethod
    async def new_adapter(cls, options: AdapterOptions) -> MongoAdapter:
        """
        Create an adapter from options and open it.

        Args:
            options: Adapter configuration.

        Returns:
            An open MongoAdapter.

        Raises:
            AdapterConnectionError: If the server cannot be reached. The
                driver client is closed before the error propagates.
        """
        adapter = cls(
            options.uri,
            database=options.database,
            collection=options.collection,
            filtered=options.filtered,
            debug=options.debug,
            options=options.client_options,
        )
        try:
            await adapter.open()
        except BaseException:
            await adapter._client.close()
            raise
        return adapter

    @property
    def is_connected(self) -> bool:
        """Whether the adapter is open."""
        return self._connected

    def is_filtered(self) -> bool:
        """Whether filtered loading is enabled."""
        return self._use_filter

    async def open(self) -> None:
        """
        Connect to MongoDB and create lookup indexes.

        Index creation is best effort; its failures are logged, not raised.

        Raises:
            AdapterConnectionError: If the server cannot be reached.
        """
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise AdapterConnectionError(str(e)) from e

        self._connected = True
        logger.info(
            f"Connected to MongoDB, using {self.database_name}.{self.collection_name}"
        )
        await self.create_indexes()

    async def close(self) -> None:
        """
        Release the underlying client.

        Raises:
            AdapterConnectionError: If the client fails to close.
        """
        try:
            await self._client.close()
        except Exception as e:
            raise AdapterConnectionError() from e
        finally:
            self._connected = False
        logger.info("MongoDB connection closed")

    async def __aenter__(self) -> MongoAdapter:
        if not self._connected:
            await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def create_indexes(self) -> None:
        """Ensure an ascending index on ptype and each of v0..v5."""
        try:
            collection = self._get_collection()
            for name in INDEX_FIELDS:
                await collection.create_index([(name, ASCENDING)])
            logger.info("Indexes created")
        except (PyMongoError, AdapterConnectionError) as e:
            logger.warning(f"Index creation failed: {e}")

    async def load_policy(self, model: Model) -> None:
        """Load all policy rules from the collection into the model."""
        await self._load(model, None, "load_policy")

    async def load_filtered_policy(
        self,
        model: Model,
        filter: Mapping[str, Any] | None = None,
    ) -> None:
        """
        Load the rules matching a MongoDB query into the model.

        The filter is only applied when the adapter was created with
        filtered=True; otherwise every rule is loaded.

        Args:
            model: The Casbin model to populate.
            filter: MongoDB query document.
        """
        query = filter if self._use_filter else None
        await self._load(model, query, "load_filtered_policy")

    async def save_policy(self, model: Model) -> bool:
        """
        Replace the stored policy with the rules in the model.

        The collection is dropped and every rule of the "p" and "g" sections
        is inserted in one insert_many call. This is not atomic: if the
        insert fails midway the collection keeps the rules written so far.

        Returns:
            False, without touching the collection, if the model has no "p"
            or no "g" section. True otherwise.
        """
        sections = [model.model.get("p"), model.model.get("g")]
        if any(section is None for section in sections):
            logger.debug("save_policy skipped: model lacks a 'p' or 'g' section")
            return False

        documents = [
            CasbinRule.from_policy(ptype, rule, include_timestamps=True).to_document()
            for section in sections
            for ptype, assertion in section.items()
            for rule in assertion.policy
        ]

        await self._clear_collection()
        if documents:
            with _driver_errors("save_policy"):
                await self._get_collection().insert_many(documents)

        logger.info(f"Saved {len(documents)} policy rules")
        return True

    async def add_policy(self, sec: str, ptype: str, rule: list[str]) -> bool:
        """Insert one rule, stamped with creation and update times."""
        document = CasbinRule.from_policy(ptype, rule, include_timestamps=True).to_document()
        with _driver_errors("add_policy"):
            await self._get_collection().insert_one(document)
        return True

    async def add_policies(
        self,
        sec: str,
        ptype: str,
        rules: Iterable[list[str]],
    ) -> bool:
        """Insert several rules with a single insert_many call."""
        documents = [
            CasbinRule.from_policy(ptype, rule, include_timestamps=True).to_document()
            for rule in rules
        ]
        if not documents:
            return True
        with _driver_errors("add_policies"):
            await self._get_collection().insert_many(documents)
        logger.debug(f"Added {len(documents)} '{ptype}' rules")
        return True

    async def remove_policy(self, sec: str, ptype: str, rule: list[str]) -> bool:
        """Delete the first document equal to the rule."""
        query = CasbinRule.from_policy(ptype, rule).to_document()
        with _driver_errors("remove_policy"):
            await self._get_collection().delete_one(query)
        return True

    async def remove_policies(
        self,
        sec: str,
        ptype: str,
        rules: Iterable[list[str]],
    ) -> bool:
        """
        Delete several rules with concurrent delete_one calls.

        Every delete runs to completion and succeeds or fails on its own. If
        any of them failed, the first failure in rule order is raised once
        all have finished.

        Raises:
            OperationError: If at least one delete failed.
        """
        queries = [CasbinRule.from_policy(ptype, rule).to_document() for rule in rules]
        collection = self._get_collection()

        results = await asyncio.gather(
            *(collection.delete_one(query) for query in queries),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, BaseException)]
        for failure in failures:
            if not isinstance(failure, Exception):
                raise failure
        if failures:
            first = failures[0]
            logger.error(
                f"remove_policies: {len(failures)} of {len(queries)} deletes failed: {first}"
            )
            if not isinstance(first, PyMongoError):
                raise first
            raise OperationError(
                str(first),
                operation="remove_policies",
                details={"failed": len(failures), "total": len(queries)},
            ) from first

        logger.debug(f"Removed up to {len(queries)} '{ptype}' rules")
        return True

    async def remove_filtered_policy(
        self,
        sec: str,
        ptype: str,
        field_index: int,
        *field_values: str,
    ) -> bool:
        """
        Delete every rule matching a partial pattern.

        ``field_values[i]`` must equal position ``field_index + i``; all
        other positions match anything. For example
        ``remove_filtered_policy("p", "p", 0, "alice", "data1")`` removes all
        of alice's rules on data1 whatever the action.

        An empty string in ``field_values`` is a wildcard, as in Casbin's
        in-memory filtered removal. It does not match only stored empty
        values, so ``(0, "", "data1")`` removes every rule on data1.
        """
        query = RuleFilter.from_field_values(ptype, field_index, field_values).to_query()
        with _driver_errors("remove_filtered_policy"):
            result = await self._get_collection().delete_many(query)
        logger.debug(f"Removed {result.deleted_count} rules matching {query}")
        return True

    async def _load(
        self,
        model: Model,
        query: Mapping[str, Any] | None,
        operation: str,
    ) -> None:
        count = 0
        with _driver_errors(operation):
            async for document in self._get_collection().find(query):
                persist.load_policy_line(CasbinRule.from_document(document).to_line(), model)
                count += 1
        logger.debug(f"Loaded {count} policy rules")

    async def _clear_collection(self) -> None:
        database = self._get_database()
        with _driver_errors("save_policy"):
            existing = await database.list_collection_names(
                filter={"name": self.collection_name}
            )
            if not existing:
                return
            try:
                await database.get_collection(self.collection_name).drop()
            except OperationFailure as e:
                if e.code != NAMESPACE_NOT_FOUND:
                    raise

    def _get_database(self) -> AsyncDatabase:
        if not self._connected:
            raise AdapterConnectionError()
        return self._client.get_database(self.database_name)

    def _get_collection(self) -> AsyncCollection:
        return self._get_database().get_collection(self.collection_name)


async def new_adapter(
    uri: str,
    database: str = DEFAULT_DATABASE,
    collection: str = DEFAULT_COLLECTION,
    filtered: bool = False,
    debug: bool = False,
    options: Mapping[str, Any] | None = None,
) -> MongoAdapter:
    """
    Create and open a MongoAdapter.

    Convenience function that delegates to MongoAdapter.new_adapter().

    Example:
        >>> adapter = await new_adapter("mongodb://localhost:27017", filtered=True)
    """
    return await MongoAdapter.new_adapter(
        AdapterOptions(
            uri=uri,
            database=database,
            collection=collection,
            filtered=filtered,
            debug=debug,
            client_options=dict(options or {}),
        )
    )
