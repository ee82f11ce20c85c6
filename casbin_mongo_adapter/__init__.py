"""
casbin-mongo-adapter: MongoDB policy storage for Casbin.

Stores Casbin policy rules in a MongoDB collection, one document per rule,
and exposes them to casbin.AsyncEnforcer through the asyncio adapter
interface.

Basic Usage:
    >>> import casbin
    >>> from casbin_mongo_adapter import new_adapter
    >>>
    >>> adapter = await new_adapter("mongodb://localhost:27017")
    >>> enforcer = casbin.AsyncEnforcer("model.conf", adapter)
    >>> await enforcer.load_policy()
    >>>
    >>> await enforcer.add_policy("alice", "data1", "read")
    >>> enforcer.enforce("alice", "data1", "read")
    True
"""

__version__ = "0.1.0"

from casbin_mongo_adapter.adapter import MongoAdapter, new_adapter
from casbin_mongo_adapter.config import AdapterOptions
from casbin_mongo_adapter.enforcer import create_enforcer
from casbin_mongo_adapter.exceptions import (
    AdapterConnectionError,
    AdapterError,
    ConfigurationError,
    OperationError,
)
from casbin_mongo_adapter.rule import CasbinRule, RuleFilter

__all__ = [
    # Version
    "__version__",
    # Adapter
    "MongoAdapter",
    "new_adapter",
    "create_enforcer",
    # Configuration
    "AdapterOptions",
    # Records
    "CasbinRule",
    "RuleFilter",
    # Exceptions
    "AdapterError",
    "ConfigurationError",
    "AdapterConnectionError",
    "OperationError",
]
