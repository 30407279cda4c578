"""Error kinds raised by the store, the writer pool and the writers."""

from __future__ import annotations


class CrawlStoreError(RuntimeError):
    """Base class for every error raised by crawlstore."""


class ConfigurationError(CrawlStoreError):
    """Invalid settings or an unavailable hash algorithm.

    Raised at construction time; the process should not keep running with a
    configuration that produced one.
    """


class StoreIOError(CrawlStoreError):
    """A read or write against the backing store failed."""


class PoolExhaustedError(CrawlStoreError):
    """No pool member became available within the configured wait."""


class PoolClosedError(CrawlStoreError):
    """The pool has been shut down."""
