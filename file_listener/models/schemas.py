"""
Pydantic models for the file listener.

Shared data models emitted by the watch engine and consumed by listeners.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ResourceType(str, Enum):
    """Kind of resource a normalized event points at."""
    FILE = "FILE"
    FOLDER = "FOLDER"


class EventKind(str, Enum):
    """Change kinds delivered to listeners."""
    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


# =====================================================
# Event Models
# =====================================================

class FileEvent(BaseModel):
    """
    Normalized filesystem change event.

    Field aliases follow the record published downstream, so
    ``event.model_dump(by_alias=True)`` yields ``resourceType``,
    ``resourcePath``, ``occurredAt`` and so on.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    resource_type: ResourceType = Field(alias="resourceType")
    resource_path: str = Field(alias="resourcePath")
    occurred_at: datetime = Field(alias="occurredAt")
    auth_token: str = Field(alias="authToken", repr=False)
    base_path: str = Field(alias="basePath")
    tenant_id: str = Field(alias="tenantId")
    host_name: str = Field(alias="hostName")

    @property
    def occurred_time(self) -> int:
        """Capture time in epoch milliseconds."""
        return int(self.occurred_at.timestamp() * 1000)
