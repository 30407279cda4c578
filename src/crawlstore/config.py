from __future__ import annotations
import hashlib
import os
import random
from dataclasses import dataclass, fields
from .errors import ConfigurationError

DATA_DIR = os.getenv("CRAWLSTORE_DATA", os.path.abspath("./data"))

# 20 MiB
DEFAULT_MAX_CONTENT_SIZE = 20 * 1024 * 1024

# content keys are 160-bit digests, hex encoded
CONTENT_DIGEST_SIZE = 20

@dataclass(frozen=True)
class StoreParameters:
    """Table, column family and column names used by the writers.

    Every name can be overridden; the defaults are short fixed strings so
    that rows stay compact.
    """
    content_table_name: str = "content"
    url_table_name: str = "url"

    # content table
    content_column_family: str = "c"
    content_column_name: str = "r"

    # url table
    curi_column_family: str = "u"
    ip_column_name: str = "i"
    path_from_seed_column_name: str = "p"
    via_column_name: str = "v"
    url_column_name: str = "u"
    request_column_name: str = "req"
    response_column_name: str = "rsp"
    mime_type_column_name: str = "m"
    hash_column_name: str = "h"
    status_column_name: str = "s"
    source_tag_column_name: str = "st"

    hash_algorithm: str = "sha1"

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, str) or not value.strip():
                raise ConfigurationError(f"{f.name} must be a non-empty string, got {value!r}")
        if self.content_table_name == self.url_table_name:
            raise ConfigurationError(
                f"content and url tables must differ (both are {self.url_table_name!r})")
        try:
            digest_size = hashlib.new(self.hash_algorithm).digest_size
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Hash algorithm {self.hash_algorithm!r} is not available") from e
        if digest_size != CONTENT_DIGEST_SIZE:
            raise ConfigurationError(
                f"Hash algorithm {self.hash_algorithm!r} gives {digest_size * 8}-bit digests, "
                f"content keys are {CONTENT_DIGEST_SIZE * 8}-bit")

    @classmethod
    def from_env(cls, environ=None) -> "StoreParameters":
        """Build parameters from CRAWLSTORE_<FIELD> variables, e.g. CRAWLSTORE_URL_TABLE_NAME."""
        environ = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            key = f"CRAWLSTORE_{f.name.upper()}"
            if key in environ:
                overrides[f.name] = environ[key]
        return cls(**overrides)

@dataclass(frozen=True)
class PoolSettings:
    max_active: int = int(os.getenv("CRAWLSTORE_POOL_MAX_ACTIVE", "5"))
    max_wait_ms: int = int(os.getenv("CRAWLSTORE_POOL_MAX_WAIT_MS", "20000"))

    def __post_init__(self):
        if self.max_active < 1:
            raise ConfigurationError(f"Pool max_active must be at least 1, got {self.max_active}")
        if self.max_wait_ms < 0:
            raise ConfigurationError(f"Pool max_wait_ms must not be negative, got {self.max_wait_ms}")

@dataclass(frozen=True)
class ProcessorSettings:
    only_process_new: bool = os.getenv("CRAWLSTORE_ONLY_NEW", "0") == "1"
    max_content_size: int = int(os.getenv("CRAWLSTORE_MAX_CONTENT_SIZE", str(DEFAULT_MAX_CONTENT_SIZE)))
    # 0 means no limit
    max_total_bytes: int = int(os.getenv("CRAWLSTORE_MAX_TOTAL_BYTES", "0"))

    def __post_init__(self):
        if self.max_content_size < 0:
            raise ConfigurationError(f"max_content_size must not be negative, got {self.max_content_size}")
        if self.max_total_bytes < 0:
            raise ConfigurationError(f"max_total_bytes must not be negative, got {self.max_total_bytes}")

@dataclass
class HttpConfig:
    user_agent: str = os.getenv("CRAWLSTORE_UA", "crawlstore/0.1")
    timeout: int = int(os.getenv("CRAWLSTORE_TIMEOUT", "20"))
    max_concurrency: int = int(os.getenv("CRAWLSTORE_CONCURRENCY", "10"))

def get_table_path(data_dir: str, table_name: str) -> str:
    """Get the SQLite file backing a logical table."""
    safe_name = ''.join(c if c.isalnum() or c in '_-' else '_' for c in table_name)
    return os.path.join(data_dir, f"{safe_name}.db")

USER_AGENTS = {
    "default": "crawlstore/0.1",
    "chrome": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "firefox": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
}

def get_user_agent(ua_type: str = "default") -> str:
    """Get a user agent string by type or return a random one if 'random' is specified."""
    if ua_type == "random":
        return random.choice(list(USER_AGENTS.values()))
    return USER_AGENTS.get(ua_type, USER_AGENTS["default"])
