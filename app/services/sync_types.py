"""Canonical item shapes, run results and adapter protocols"""

import enum
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol


class SyncDirection(str, enum.Enum):
    """Which passes a run performs"""

    BOTH = "both"
    SOURCE_TO_TARGET = "source_to_target"
    TARGET_TO_SOURCE = "target_to_source"

    @property
    def includes_source_to_target(self) -> bool:
        return self in (SyncDirection.BOTH, SyncDirection.SOURCE_TO_TARGET)

    @property
    def includes_target_to_source(self) -> bool:
        return self in (SyncDirection.BOTH, SyncDirection.TARGET_TO_SOURCE)


class SyncAction(str, enum.Enum):
    """Per-item outcome"""

    CREATED = "created"
    UPDATED_TARGET = "updated_target"
    UPDATED_SOURCE = "updated_source"
    SKIPPED = "skipped"
    ERROR = "error"


_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO8601 timestamp from either system into an aware UTC datetime.

    Azure DevOps emits up to 7 fractional digits, which `fromisoformat` rejects,
    so the fraction is clamped to microseconds first.
    """
    if not value:
        return None
    text = value.strip().replace("Z", "+00:00")
    text = _FRACTION_RE.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass
class SourceItem:
    """A Source record normalized for syncing. Rebuilt on every fetch."""

    id: str
    title: str
    description: Optional[str] = None
    status: Optional[str] = None
    assignee: Optional[str] = None
    target_id: Optional[str] = None
    target_url: Optional[str] = None
    last_modified_at: Optional[datetime] = None
    extra_fields: Dict[str, str] = field(default_factory=dict)
    child_ids: List[str] = field(default_factory=list)


@dataclass
class ChildItem:
    id: str
    title: str
    status: Optional[str] = None


@dataclass
class TargetItem:
    """A Target record. `source_id` comes from the back-reference tag."""

    id: int
    title: str
    description: str = ""
    state: str = ""
    assignee: Optional[str] = None
    changed_at: Optional[datetime] = None
    source_id: Optional[str] = None


@dataclass
class SyncOutcome:
    source_id: str
    title: str
    action: SyncAction
    status: Optional[str] = None
    target_id: Optional[str] = None
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "source_id": self.source_id,
            "title": self.title,
            "status": self.status,
            "target_id": self.target_id,
            "action": self.action.value,
            "detail": self.detail,
        }


@dataclass
class SyncErrorEntry:
    source_id: str
    title: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"source_id": self.source_id, "title": self.title, "message": self.message}


@dataclass
class SyncRunResult:
    """Aggregated result of one run. Only ever appended to while the run is active."""

    created: int = 0
    updated_target: int = 0
    updated_source: int = 0
    skipped: int = 0
    errors: List[SyncErrorEntry] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)
    items: List[SyncOutcome] = field(default_factory=list)
    cancelled: bool = False
    run_id: Optional[int] = None

    @property
    def error_count(self) -> int:
        return len(self.errors)

    def counts(self) -> Dict[str, int]:
        return {
            "created": self.created,
            "updated_target": self.updated_target,
            "updated_source": self.updated_source,
            "skipped": self.skipped,
            "errors": self.error_count,
        }

    def to_dict(self) -> Dict[str, object]:
        return {
            "run_id": self.run_id,
            "counts": self.counts(),
            "cancelled": self.cancelled,
            "errors": [e.to_dict() for e in self.errors],
            "logs": list(self.logs),
            "items": [i.to_dict() for i in self.items],
        }


class SourceAdapter(Protocol):
    """What the orchestrator needs from the Source system."""

    dropped_ids: List[str]

    def fetch_all(self) -> List[SourceItem]: ...

    def fetch_one(self, item_id: str) -> Optional[SourceItem]: ...

    def write_back_link(self, item_id: str, target_url: str) -> None: ...

    def apply_target_update(
        self,
        item_id: str,
        title: Optional[str] = None,
        status: Optional[str] = None,
        assignee: Optional[str] = None,
    ) -> List[str]: ...

    def fetch_children(self, ids: List[str]) -> List[ChildItem]: ...


class TargetAdapter(Protocol):
    """What the orchestrator needs from the Target system."""

    def create_item(
        self,
        title: str,
        description: Optional[str],
        state: str,
        assignee: Optional[str],
        source_id: str,
        extra_fields: Optional[Dict[str, str]] = None,
    ) -> TargetItem: ...

    def create_child(self, title: str, parent_id: int, source_id: str) -> TargetItem: ...

    def update_state(
        self, item_id: int, new_state: str, assignee: Optional[str] = None
    ) -> TargetItem: ...

    def fetch_one(self, item_id: str) -> Optional[TargetItem]: ...

    def fetch_linked_items(self) -> List[TargetItem]: ...

    def resolve_url(self, item_id: int) -> str: ...
