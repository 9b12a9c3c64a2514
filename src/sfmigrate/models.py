"""Value types passed to and returned from the Salesforce connections."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional


# ----------------------------------------------------------------------
# Metadata API items
# ----------------------------------------------------------------------
@dataclass
class Metadata:
    """A metadata component; ``extra`` is merged into the serialized payload."""

    full_name: str
    extra: Dict[str, Any] = field(default_factory=dict, kw_only=True)

    xsi_type: ClassVar[str] = "Metadata"

    def payload(self) -> Dict[str, Any]:
        """Ordered element name -> value mapping sent inside ``<metadata>``."""
        body: Dict[str, Any] = {"fullName": self.full_name}
        body.update(self._fields())
        body.update(self.extra)
        return {k: v for k, v in body.items() if v is not None}

    def _fields(self) -> Dict[str, Any]:
        return {}


@dataclass
class CustomField(Metadata):
    """``full_name`` is ``Object__c.Field__c``."""

    label: str = ""
    type: str = "Text"
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    visible_lines: Optional[int] = None
    required: Optional[bool] = None
    external_id: Optional[bool] = None
    unique: Optional[bool] = None
    description: Optional[str] = None
    picklist_values: List[str] = field(default_factory=list)

    xsi_type: ClassVar[str] = "CustomField"

    def _fields(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "label": self.label,
            "type": self.type,
            "length": self.length,
            "precision": self.precision,
            "scale": self.scale,
            "visibleLines": self.visible_lines,
            "required": self.required,
            "externalId": self.external_id,
            "unique": self.unique,
            "description": self.description,
        }
        if self.picklist_values:
            out["valueSet"] = {
                "valueSetDefinition": {
                    "value": [
                        {"fullName": v, "default": False, "label": v} for v in self.picklist_values
                    ]
                }
            }
        return out


@dataclass
class Queue(Metadata):
    name: str = ""
    sobject_types: List[str] = field(default_factory=list)
    email: Optional[str] = None
    does_send_email_to_members: Optional[bool] = None

    xsi_type: ClassVar[str] = "Queue"

    def _fields(self) -> Dict[str, Any]:
        return {
            "name": self.name or self.full_name,
            "email": self.email,
            "doesSendEmailToMembers": self.does_send_email_to_members,
            "queueSobject": [{"sobjectType": t} for t in self.sobject_types] or None,
        }


@dataclass
class DataCategory:
    name: str
    label: str
    children: List["DataCategory"] = field(default_factory=list)

    def payload(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name, "label": self.label}
        if self.children:
            out["dataCategory"] = [c.payload() for c in self.children]
        return out


@dataclass
class DataCategoryGroup(Metadata):
    label: str = ""
    active: bool = True
    description: Optional[str] = None
    data_category: Optional[DataCategory] = None

    xsi_type: ClassVar[str] = "DataCategoryGroup"

    def _fields(self) -> Dict[str, Any]:
        return {
            "active": self.active,
            "dataCategory": self.data_category.payload() if self.data_category else None,
            "description": self.description,
            "label": self.label or self.full_name,
        }


# ----------------------------------------------------------------------
# Partner API
# ----------------------------------------------------------------------
@dataclass
class SObject:
    """A record for the partner API. ``None`` values are sent as fieldsToNull."""

    type: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def id(self) -> Optional[str]:
        return self.fields.get("Id")


@dataclass(frozen=True)
class ApiError:
    status_code: str
    message: str
    fields: tuple = ()


@dataclass(frozen=True)
class SaveResult:
    success: bool
    id: Optional[str] = None
    errors: tuple = ()


@dataclass(frozen=True)
class UpsertResult:
    success: bool
    id: Optional[str] = None
    created: bool = False
    errors: tuple = ()


@dataclass(frozen=True)
class MetadataUpsertResult:
    success: bool
    full_name: str = ""
    created: bool = False
    errors: tuple = ()


@dataclass
class QueryResult:
    records: List[Dict[str, Any]]
    done: bool = True
    query_locator: Optional[str] = None
    size: int = 0


# ----------------------------------------------------------------------
# Bulk API
# ----------------------------------------------------------------------
class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    UPSERT = "upsert"
    DELETE = "delete"
    HARD_DELETE = "hardDelete"
    QUERY = "query"


class JobState(str, Enum):
    OPEN = "Open"
    CLOSED = "Closed"
    ABORTED = "Aborted"
    FAILED = "Failed"


class ConcurrencyMode(str, Enum):
    PARALLEL = "Parallel"
    SERIAL = "Serial"


class ContentType(str, Enum):
    JSON = "JSON"
    CSV = "CSV"
    XML = "XML"


@dataclass
class JobInfo:
    object: Optional[str] = None
    operation: Optional[Operation] = None
    id: Optional[str] = None
    state: Optional[JobState] = None
    concurrency_mode: Optional[ConcurrencyMode] = None
    content_type: Optional[ContentType] = None
    external_id_field_name: Optional[str] = None
    created_date: Optional[datetime] = None

    def to_json(self) -> Dict[str, Any]:
        body = {
            "object": self.object,
            "operation": self.operation.value if self.operation else None,
            "state": self.state.value if self.state else None,
            "concurrencyMode": self.concurrency_mode.value if self.concurrency_mode else None,
            "contentType": self.content_type.value if self.content_type else None,
            "externalIdFieldName": self.external_id_field_name,
        }
        return {k: v for k, v in body.items() if v is not None}

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> JobInfo:
        created = data.get("createdDate")
        return cls(
            object=data.get("object"),
            operation=Operation(data["operation"]) if data.get("operation") else None,
            id=data.get("id"),
            state=JobState(data["state"]) if data.get("state") else None,
            concurrency_mode=(
                ConcurrencyMode(data["concurrencyMode"]) if data.get("concurrencyMode") else None
            ),
            content_type=ContentType(data["contentType"]) if data.get("contentType") else None,
            external_id_field_name=data.get("externalIdFieldName"),
            created_date=parse_sf_datetime(created) if created else None,
        )


def parse_sf_datetime(value: str) -> datetime:
    """Parse ``2016-03-01T18:22:05.000+0000`` (and the ``Z`` variant)."""
    if value.endswith("Z"):
        value = value[:-1] + "+0000"
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognised Salesforce datetime: {value!r}")
