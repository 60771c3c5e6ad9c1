"""
Cache Configuration

Centralized configuration for the caching layer.

Every cached computation is declared once in CACHE_POLICIES: the key
template it is stored under and how long a value stays fresh. Services
never spell out key strings or TTLs themselves; they ask the policy for a
key. Per-key TTLs can be overridden with CACHE_TTL_<NAME> environment
variables (e.g. CACHE_TTL_POOL_ANALYTICS=120) and are validated on load.
"""

import os
import string
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from functools import lru_cache
from typing import Dict, List


# Characters that would break key structure or turn a key into a glob
_FORBIDDEN_KEY_CHARS = set(":*?[]") | set(string.whitespace)

MIN_TTL_SECONDS = 5


class CacheKey(str, Enum):
    """Named cached computations."""
    POOL_RESERVES = "pool_reserves"
    POOL_ANALYTICS = "pool_analytics"
    POOL_METADATA = "pool_metadata"
    POOL_HISTORY = "pool_history"
    POOL_LIST = "pool_list"
    POOL_RISK = "pool_risk"
    USER_POSITIONS = "user_positions"
    USER_PORTFOLIO = "user_portfolio"
    USER_LP_BALANCE = "user_lp_balance"
    USER_POOL_SHARE = "user_pool_share"
    TOKEN_PRICE = "token_price"
    FEE_EARNINGS = "fee_earnings"
    SYSTEM_STATS = "system_stats"


@dataclass(frozen=True)
class CacheTTL:
    """
    Default freshness window per computation.

    Reserves and balances move with every block, so they are short.
    Metadata and the pool list change only when pools are created.
    """

    POOL_RESERVES: timedelta = timedelta(seconds=30)
    POOL_ANALYTICS: timedelta = timedelta(minutes=5)
    POOL_METADATA: timedelta = timedelta(hours=1)
    POOL_HISTORY: timedelta = timedelta(minutes=30)
    POOL_LIST: timedelta = timedelta(minutes=10)
    POOL_RISK: timedelta = timedelta(minutes=30)
    USER_POSITIONS: timedelta = timedelta(minutes=1)
    USER_PORTFOLIO: timedelta = timedelta(minutes=2)
    USER_LP_BALANCE: timedelta = timedelta(seconds=30)
    USER_POOL_SHARE: timedelta = timedelta(seconds=30)
    TOKEN_PRICE: timedelta = timedelta(minutes=1)
    FEE_EARNINGS: timedelta = timedelta(minutes=5)
    SYSTEM_STATS: timedelta = timedelta(minutes=10)

    @classmethod
    def for_key(cls, name: CacheKey) -> timedelta:
        """Get the default TTL for a computation."""
        return getattr(cls, name.name)


@dataclass(frozen=True)
class CachePolicy:
    """Key template and freshness window for one computation."""

    name: CacheKey
    template: str
    ttl_seconds: int

    @property
    def ttl(self) -> timedelta:
        return timedelta(seconds=self.ttl_seconds)

    @property
    def params(self) -> List[str]:
        return [
            fname for _, fname, _, _ in string.Formatter().parse(self.template)
            if fname
        ]

    def key(self, **params: str) -> str:
        """
        Build the key for a concrete request.

        Raises ValueError for missing, empty or malformed parameters so that
        two different requests can never share a key.
        """
        expected = self.params
        missing = [p for p in expected if p not in params]
        extra = [p for p in params if p not in expected]
        if missing or extra:
            raise ValueError(
                f"{self.name.value}: expected params {expected}, "
                f"got {sorted(params)}"
            )
        for pname, value in params.items():
            value = str(value)
            if not value or _FORBIDDEN_KEY_CHARS & set(value):
                raise ValueError(
                    f"{self.name.value}: invalid value for {pname}: {value!r}"
                )
        return self.template.format(**{k: str(v) for k, v in params.items()})

    def pattern(self, **params: str) -> str:
        """Glob matching every key of this computation; unset params become '*'."""
        filled = {p: "*" for p in self.params}
        for pname, value in params.items():
            if pname not in filled:
                raise ValueError(f"{self.name.value}: unknown param {pname}")
            filled[pname] = str(value)
        return self.template.format(**filled)


_TEMPLATES: Dict[CacheKey, str] = {
    CacheKey.POOL_RESERVES: "pool:reserves:{pool_id}",
    CacheKey.POOL_ANALYTICS: "pool:analytics:{pool_id}",
    CacheKey.POOL_METADATA: "pool:metadata:{pool_id}",
    CacheKey.POOL_HISTORY: "pool:history:{pool_id}:{timeframe}",
    CacheKey.POOL_LIST: "pools:list",
    CacheKey.POOL_RISK: "pool:risk:{pool_id}",
    CacheKey.USER_POSITIONS: "user:positions:{address}",
    CacheKey.USER_PORTFOLIO: "user:portfolio:{address}",
    CacheKey.USER_LP_BALANCE: "user:lp:{address}:{pool_id}",
    CacheKey.USER_POOL_SHARE: "user:lp:{address}:{pool_id}:share",
    CacheKey.TOKEN_PRICE: "token:price:{token}",
    CacheKey.FEE_EARNINGS: "fees:{address}:{pool_id}",
    CacheKey.SYSTEM_STATS: "system:stats",
}


def _env_ttl(name: CacheKey) -> int:
    raw = os.getenv(f"CACHE_TTL_{name.name}")
    if raw is None:
        return int(CacheTTL.for_key(name).total_seconds())
    return int(raw)


def _default_policies() -> Dict[CacheKey, CachePolicy]:
    return {
        name: CachePolicy(name=name, template=template, ttl_seconds=_env_ttl(name))
        for name, template in _TEMPLATES.items()
    }


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable caching globally
    - CACHE_BACKEND: "redis" or "memory"
    - CACHE_NAMESPACE: Prefix applied to every stored key
    - REDIS_URL and REDIS_* connection settings
    - CACHE_TTL_<NAME>: Per-computation TTL in seconds
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "velumx:liquidity"
    ))

    # Global cache toggle
    enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_ENABLED",
        "true"
    ).lower() == "true")

    backend: str = field(default_factory=lambda: os.getenv(
        "CACHE_BACKEND",
        "memory"
    ).lower())

    # Redis connection
    redis_url: str = field(default_factory=lambda: os.getenv(
        "REDIS_URL",
        "redis://localhost:6379/0"
    ))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "20"
    )))
    redis_socket_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_SOCKET_TIMEOUT",
        "2.0"
    )))
    redis_connect_timeout: float = field(default_factory=lambda: float(os.getenv(
        "REDIS_CONNECT_TIMEOUT",
        "2.0"
    )))

    # Compression of large values
    compression_enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_COMPRESSION_ENABLED",
        "true"
    ).lower() == "true")
    compression_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_COMPRESSION_THRESHOLD",
        "1024"
    )))

    # Circuit breaker
    circuit_breaker_enabled: bool = field(default_factory=lambda: os.getenv(
        "CACHE_CIRCUIT_BREAKER_ENABLED",
        "true"
    ).lower() == "true")
    circuit_breaker_threshold: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_THRESHOLD",
        "5"
    )))
    circuit_breaker_timeout: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_CIRCUIT_BREAKER_TIMEOUT",
        "30"
    )))

    # In-memory store housekeeping
    memory_cleanup_interval: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_MEMORY_CLEANUP_INTERVAL",
        "60"
    )))

    policies: Dict[CacheKey, CachePolicy] = field(default_factory=_default_policies)

    def policy(self, name: CacheKey) -> CachePolicy:
        return self.policies[name]

    def validate(self) -> List[str]:
        """Return a list of configuration errors (empty when valid)."""
        errors = []
        if self.backend not in ("redis", "memory"):
            errors.append(f"CACHE_BACKEND must be 'redis' or 'memory', got {self.backend!r}")
        if not self.namespace:
            errors.append("CACHE_NAMESPACE must not be empty")
        if self.backend == "redis" and not self.redis_url:
            errors.append("REDIS_URL is required for the redis backend")
        if self.compression_threshold < 0:
            errors.append("CACHE_COMPRESSION_THRESHOLD must be non-negative")
        if self.circuit_breaker_threshold < 1:
            errors.append("CACHE_CIRCUIT_BREAKER_THRESHOLD must be at least 1")
        for name in CacheKey:
            policy = self.policies.get(name)
            if policy is None:
                errors.append(f"Missing cache policy for {name.value}")
            elif policy.ttl_seconds < MIN_TTL_SECONDS:
                errors.append(
                    f"TTL for {name.value} must be at least {MIN_TTL_SECONDS}s, "
                    f"got {policy.ttl_seconds}s"
                )
        return errors


def load_cache_config() -> CacheConfig:
    """Build and validate cache configuration. Raises ValueError if invalid."""
    config = CacheConfig()
    errors = config.validate()
    if errors:
        raise ValueError("Invalid cache configuration: " + "; ".join(errors))
    return config


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return load_cache_config()
