from sqlalchemy import BigInteger, Integer, JSON
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite for local runs and tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


# ============================================================================
# ENUMS
# ============================================================================

class ChangeAction(str, enum.Enum):
    """Row-level change captured on the bronze table"""
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class StageStatus(str, enum.Enum):
    """Pipeline run log status"""
    STARTED = "STARTED"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class CheckpointStatus(str, enum.Enum):
    """Last outcome recorded against a feed checkpoint"""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TaskState(str, enum.Enum):
    """Task history state"""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class RefreshAction(str, enum.Enum):
    """What a dynamic table refresh did"""
    FULL = "FULL"
    NO_DATA = "NO_DATA"


class LoadStatus(str, enum.Enum):
    """Outcome of loading one raw zone file"""
    LOADED = "LOADED"
    LOAD_FAILED = "LOAD_FAILED"


class Layer(str, enum.Enum):
    """Medallion layer"""
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
