"""Status and assignee vocabulary mapping between Notion and Azure DevOps.

Everything here is pure: no I/O, no logging. Lookups try an exact key first,
then a case-insensitive key. Status lookups fall back to a configured default;
assignee lookups never do, since an identity must not be guessed.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


def lookup(mapping: Mapping[str, str], key: Optional[str]) -> Optional[str]:
    """Exact, then case-insensitive lookup. Empty values count as a miss."""
    if not key or not mapping:
        return None
    value = mapping.get(key)
    if value:
        return value
    lowered = key.lower()
    for k, v in mapping.items():
        if k.lower() == lowered and v:
            return v
    return None


def _clean_map(raw: Any) -> Dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items() if k is not None and v is not None}


@dataclass(frozen=True)
class MappingRules:
    """Per-tenant rules. Treated as immutable for the duration of a run."""

    status_map: Dict[str, str] = field(default_factory=dict)
    reverse_status_map: Dict[str, str] = field(default_factory=dict)
    assignee_map: Dict[str, str] = field(default_factory=dict)
    reverse_assignee_map: Dict[str, str] = field(default_factory=dict)
    default_target_state: str = "New"
    default_source_status: str = "Not started"

    # Notion property bindings
    status_property: str = "Status"
    assignee_property: str = "Assignee"
    description_property: str = "Description"
    target_id_property: str = "ADO ID"
    target_url_property: str = "PBI"
    subtask_property: Optional[str] = None

    # Azure DevOps classification applied on creation
    work_item_type: str = "Product Backlog Item"
    child_work_item_type: str = "Task"
    initial_target_state: str = "New"
    area_path: Optional[str] = None
    work_type: Optional[str] = None
    work_type_field: Optional[str] = None

    @classmethod
    def from_config(cls, config: Any) -> "MappingRules":
        """Build rules from a SyncConfig row (or anything with the same attributes)."""

        def _get(name: str, default: Any = None) -> Any:
            value = getattr(config, name, None)
            return default if value in (None, "") else value

        return cls(
            status_map=_clean_map(_get("status_mapping", {})),
            reverse_status_map=_clean_map(_get("reverse_status_mapping", {})),
            assignee_map=_clean_map(_get("assignee_mapping", {})),
            reverse_assignee_map=_clean_map(_get("reverse_assignee_mapping", {})),
            default_target_state=_get("default_target_state", "New"),
            default_source_status=_get("default_source_status", "Not started"),
            status_property=_get("source_status_property", "Status"),
            assignee_property=_get("source_assignee_property", "Assignee"),
            description_property=_get("source_description_property", "Description"),
            target_id_property=_get("source_target_id_property", "ADO ID"),
            target_url_property=_get("source_target_url_property", "PBI"),
            subtask_property=_get("source_subtask_property"),
            work_item_type=_get("target_work_item_type", "Product Backlog Item"),
            child_work_item_type=_get("target_child_work_item_type", "Task"),
            initial_target_state=_get("target_initial_state", "New"),
            area_path=_get("target_area_path"),
            work_type=_get("target_work_type"),
            work_type_field=_get("target_work_type_field"),
        )

    def map_forward(self, source_status: Optional[str]) -> str:
        """Notion status -> ADO state"""
        return lookup(self.status_map, source_status) or self.default_target_state

    def map_backward(self, target_state: Optional[str]) -> str:
        """ADO state -> Notion status"""
        return lookup(self.reverse_status_map, target_state) or self.default_source_status

    def map_assignee_forward(self, identity: Optional[str]) -> Optional[str]:
        """Notion email -> ADO user, or None when unmapped"""
        return lookup(self.assignee_map, identity)

    def map_assignee_backward(self, display_name: Optional[str]) -> Optional[str]:
        """ADO display name -> Notion email, or None when unmapped"""
        return lookup(self.reverse_assignee_map, display_name)

    def has_forward_mapping(self, source_status: Optional[str]) -> bool:
        return lookup(self.status_map, source_status) is not None

    def has_backward_mapping(self, target_state: Optional[str]) -> bool:
        return lookup(self.reverse_status_map, target_state) is not None
