"""Core primitives for strata: errors, logging, settings, retry, hashing,
dialects and database adapters.

Modules
-------
errors      StrataError hierarchy
logging     structlog configuration and get_logger()
settings    StrataSettings (pydantic-settings)
retry       ExponentialBackoff / RetryContext
hashing     compute_hash() / chain_checksum()
dialect     SQLite / PostgreSQL SQL fragments
protocols   Connection protocol
adapters    DatabaseAdapter implementations
"""
