"""Core infrastructure shared by every layer.

Usage::

    from releasewatch.core import get_config, setup_logging, get_logger
    from releasewatch.core import init_db, get_session
    from releasewatch.core.models import ReleaseCandidate, DuplicateVerdict
"""

from releasewatch.core.config import (
    AppConfig,
    DatabaseConfig,
    DedupConfig,
    LockConfig,
    LoggingConfig,
    NormalizerConfig,
    RetryConfig,
    ScheduleConfig,
    get_config,
)
from releasewatch.core.database import (
    Base,
    IngestionLockDB,
    ReleaseDB,
    ReleaseSourceDB,
    build_engine,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    pydantic_to_orm,
)
from releasewatch.core.exceptions import (
    AmbiguousMatchError,
    CollectionError,
    ConfigError,
    ConstraintViolationError,
    DatabaseError,
    IngestionError,
    MergeError,
    ReleaseWatchError,
    StoreUnavailable,
)
from releasewatch.core.logger import get_logger, log_context, setup_logging
from releasewatch.core.models import (
    BaseEntity,
    DuplicateVerdict,
    IngestionLock,
    MatchReason,
    ReleaseCandidate,
    ReleaseRecord,
    ReleaseSource,
    TimestampMixin,
)

__all__ = [
    # config
    "AppConfig",
    "DatabaseConfig",
    "DedupConfig",
    "LockConfig",
    "LoggingConfig",
    "NormalizerConfig",
    "RetryConfig",
    "ScheduleConfig",
    "get_config",
    # logger
    "setup_logging",
    "get_logger",
    "log_context",
    # exceptions
    "ReleaseWatchError",
    "ConfigError",
    "DatabaseError",
    "StoreUnavailable",
    "ConstraintViolationError",
    "AmbiguousMatchError",
    "MergeError",
    "CollectionError",
    "IngestionError",
    # models
    "MatchReason",
    "BaseEntity",
    "TimestampMixin",
    "ReleaseCandidate",
    "ReleaseRecord",
    "ReleaseSource",
    "IngestionLock",
    "DuplicateVerdict",
    # database
    "Base",
    "ReleaseDB",
    "ReleaseSourceDB",
    "IngestionLockDB",
    "build_engine",
    "get_engine",
    "get_session_factory",
    "init_db",
    "get_session",
    "pydantic_to_orm",
]
