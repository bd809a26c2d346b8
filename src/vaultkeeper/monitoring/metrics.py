"""
Prometheus metrics for the keyring controller.

Tracks vault unlocks, account lifecycle and signing requests.
"""

from prometheus_client import Counter, Gauge, Histogram, Info
import structlog

from vaultkeeper.config import config

logger = structlog.get_logger()

_ns = config.monitoring.namespace


# ============== INFO ==============

build_info = Info(
    f'{_ns}_build',
    'vaultkeeper build information',
)

build_info.info({
    'version': '1.0.0',
})


# ============== COUNTERS ==============

# Vault
vault_unlocks_total = Counter(
    f'{_ns}_vault_unlocks_total',
    'Total vault unlock attempts',
    ['method', 'result'],
)

vault_persists_total = Counter(
    f'{_ns}_vault_persists_total',
    'Total vault re-encryptions',
)

vault_locks_total = Counter(
    f'{_ns}_vault_locks_total',
    'Total times the vault was locked',
)

# Accounts
accounts_added_total = Counter(
    f'{_ns}_accounts_added_total',
    'Total accounts derived or unlocked',
    ['keyring_type'],
)

accounts_imported_total = Counter(
    f'{_ns}_accounts_imported_total',
    'Total accounts imported',
    ['strategy'],
)

accounts_removed_total = Counter(
    f'{_ns}_accounts_removed_total',
    'Total accounts removed',
    ['keyring_type'],
)

# Signing
signatures_total = Counter(
    f'{_ns}_signatures_total',
    'Total signing requests dispatched to keyrings',
    ['kind', 'keyring_type'],
)

# Seed verification
seed_verifications_total = Counter(
    f'{_ns}_seed_verifications_total',
    'Total seed phrase verifications',
    ['result'],
)


# ============== GAUGES ==============

keyrings_active = Gauge(
    f'{_ns}_keyrings_active',
    'Keyrings currently loaded',
)

accounts_active = Gauge(
    f'{_ns}_accounts_active',
    'Accounts currently loaded',
)


# ============== HISTOGRAMS ==============

unlock_duration_seconds = Histogram(
    f'{_ns}_unlock_duration_seconds',
    'Vault decryption and keyring restore time',
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


# ============== HELPERS ==============

def track_unlock(method: str, success: bool, duration: float | None = None):
    """Track a vault unlock attempt."""
    result = "success" if success else "failed"
    vault_unlocks_total.labels(method=method, result=result).inc()
    if duration is not None:
        unlock_duration_seconds.observe(duration)
    logger.debug("metric_vault_unlock", method=method, result=result)


def track_signature(kind: str, keyring_type: str):
    """Track a signing request."""
    signatures_total.labels(kind=kind, keyring_type=keyring_type).inc()


def track_seed_verification(success: bool):
    """Track seed phrase verification."""
    result = "success" if success else "failed"
    seed_verifications_total.labels(result=result).inc()


def track_loaded(keyring_count: int, account_count: int):
    """Track loaded keyrings and accounts."""
    keyrings_active.set(keyring_count)
    accounts_active.set(account_count)


__all__ = [
    "build_info",
    "vault_unlocks_total",
    "vault_persists_total",
    "vault_locks_total",
    "accounts_added_total",
    "accounts_imported_total",
    "accounts_removed_total",
    "signatures_total",
    "seed_verifications_total",
    "keyrings_active",
    "accounts_active",
    "unlock_duration_seconds",
    "track_unlock",
    "track_signature",
    "track_seed_verification",
    "track_loaded",
]
