"""
Data model for conflict generation

Records are the documents written concurrently from several regions.
Attempt outcomes classify a single regional write:

    Committed: The store accepted the write
    LostRace:  Another region's write already committed and replicated
    Fatal:     Infrastructure failure; aborts the campaign
"""

import json
import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Dict, Any, Union

# Sample payload shared by every generated document
DEFAULT_NAME = "Scott Guthrie"
DEFAULT_CITY = "Redmond"
DEFAULT_POSTAL_CODE = "98052"

ID_RANGE = (0, 1000)
USER_DEFINED_ID_RANGE = (0, 10)


class ResolutionMode(Enum):
    """
    Conflict resolution policy of a collection.

    LAST_WRITER_WINS: Store resolves conflicts transparently using a
                      resolution path (here /userdefinedid)
    CUSTOM: Conflicts are persisted to the conflict feed for manual handling
    """
    LAST_WRITER_WINS = "LastWriterWins"
    CUSTOM = "Custom"


class ConflictKind(Enum):
    """Which kind of conflict a campaign tries to induce"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def from_string(cls, value: str) -> "ConflictKind":
        try:
            return cls(value.lower())
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ValueError(f"Invalid conflict kind: {value!r} (expected one of {valid})")


class WriteOperation(Enum):
    """Operation a region performs during fan-out"""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class CollectionRef:
    """Name-based reference to a collection inside a database"""
    database: str
    collection: str

    @property
    def database_link(self) -> str:
        return f"dbs/{self.database}"

    @property
    def link(self) -> str:
        return f"dbs/{self.database}/colls/{self.collection}"

    def document_link(self, document_id: str) -> str:
        return f"{self.link}/docs/{document_id}"

    def __str__(self) -> str:
        return self.link


@dataclass
class CollectionSpec:
    """
    Definition used by the setup collaborator to create a collection.

    Attributes:
        name: Collection id
        mode: Conflict resolution mode
        resolution_path: LWW resolution path (ignored for CUSTOM)
        partition_key_path: Partition key path
    """
    name: str
    mode: ResolutionMode
    resolution_path: Optional[str] = "/userdefinedid"
    partition_key_path: str = "/postalcode"

    def to_dict(self) -> Dict[str, Any]:
        policy: Dict[str, Any] = {"mode": self.mode.value}
        if self.mode == ResolutionMode.LAST_WRITER_WINS and self.resolution_path:
            policy["conflictResolutionPath"] = self.resolution_path
        return {
            "id": self.name,
            "partitionKey": {"paths": [self.partition_key_path], "kind": "Hash"},
            "conflictResolutionPolicy": policy,
        }


@dataclass
class Record:
    """
    One logical document under test.

    Attributes:
        id: Conflict key, shared by every region's write in a round
        name: Sample payload
        city: Sample payload
        postal_code: Partition key (required)
        user_defined_id: 0-9, resolution path for last-writer-wins
        region: Region that produced or last mutated this version
        version_token: Opaque concurrency token (ETag) once persisted
        self_ref: Opaque resource locator once persisted
        timestamp: Server timestamp once persisted
    """
    id: str
    name: str = DEFAULT_NAME
    city: str = DEFAULT_CITY
    postal_code: str = DEFAULT_POSTAL_CODE
    user_defined_id: int = 0
    region: Optional[str] = None
    version_token: Optional[str] = None
    self_ref: Optional[str] = None
    timestamp: Optional[int] = None

    def __post_init__(self):
        if self.postal_code is None:
            raise ValueError("postal_code is the partition key and cannot be None")

    def copy(self, **changes: Any) -> "Record":
        return replace(self, **changes)

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the JSON document body sent to the store."""
        return {
            "id": self.id,
            "name": self.name,
            "city": self.city,
            "postalcode": self.postal_code,
            "userdefinedid": self.user_defined_id,
            "region": self.region,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Record":
        """Build a Record from a store document, keeping system properties."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", DEFAULT_NAME),
            city=data.get("city", DEFAULT_CITY),
            postal_code=data.get("postalcode", DEFAULT_POSTAL_CODE),
            user_defined_id=int(data.get("userdefinedid", 0)),
            region=data.get("region"),
            version_token=data.get("_etag"),
            self_ref=data.get("_self"),
            timestamp=data.get("_ts"),
        )

    @classmethod
    def sample(cls, record_id: Union[int, str], region: Optional[str],
               rng: random.Random) -> "Record":
        """Sample record for a round, with a random resolution tiebreaker."""
        return cls(
            id=str(record_id),
            user_defined_id=rng.randrange(*USER_DEFINED_ID_RANGE),
            region=region,
        )

    def __str__(self) -> str:
        return (f"Id: {self.id}, Name: {self.name}, City: {self.city}, "
                f"PostalCode: {self.postal_code}, UserDefId: {self.user_defined_id}, "
                f"Region: {self.region}")


@dataclass
class ConflictRecord:
    """
    Entry of a collection's conflict feed.

    Read-only from the orchestrator's point of view; `self_ref` (or `id`)
    is what the cleanup collaborator uses to delete it.
    """
    id: str
    resource_id: str
    operation_type: str
    resource_type: str = "document"
    self_ref: Optional[str] = None
    content: Dict[str, Any] = field(default_factory=dict)
    partition_key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConflictRecord":
        content = data.get("content") or {}
        if isinstance(content, str):
            content = json.loads(content) if content else {}
        return cls(
            id=str(data.get("id", data.get("_rid", ""))),
            # resourceId is the internal _rid; the document id lives in content
            resource_id=str(content.get("id") or data.get("resourceId", "")),
            operation_type=str(data.get("operationType", "")).lower(),
            resource_type=str(data.get("resourceType", "document")).lower(),
            self_ref=data.get("_self"),
            content=content,
            partition_key=content.get("postalcode"),
        )


@dataclass(frozen=True)
class Committed:
    """The store accepted the write"""
    record: Record


@dataclass(frozen=True)
class LostRace:
    """The write lost to a conflicting version that already replicated"""
    region: str
    reason: str


@dataclass(frozen=True)
class Fatal:
    """The write failed for any reason other than a lost race"""
    region: str
    error: BaseException


AttemptOutcome = Union[Committed, LostRace, Fatal]
