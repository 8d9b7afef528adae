"""Azure DevOps work item client (sync target side)"""

import html
import logging
import re
import threading
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from app.config import settings
from app.services.errors import (
    INVALID_TRANSITION_MARKER,
    InvalidTransitionError,
    NotFoundError,
    SyncCancelledError,
    TransientAdapterError,
)
from app.services.http_client import ApiClient
from app.services.mapping import MappingRules
from app.services.sync_types import TargetItem, parse_timestamp

logger = logging.getLogger(__name__)

API_VERSION = "7.1"
LINK_TAG = "from_notion"
SOURCE_ID_TAG_PREFIX = "notion-id:"
CHILD_SOURCE_ID_TAG_PREFIX = "notion-subtask:"
BATCH_SIZE = 200

_SOURCE_ID_TAG_RE = re.compile(r"notion-id:([a-f0-9-]+)", re.IGNORECASE)

_FIELDS = [
    "System.Id",
    "System.Title",
    "System.State",
    "System.AssignedTo",
    "System.ChangedDate",
    "System.Tags",
    "System.Description",
]


def source_id_from_tags(tags: Optional[str]) -> Optional[str]:
    """Tags look like "from_notion; notion-id:abc123-def456" """
    if not tags:
        return None
    m = _SOURCE_ID_TAG_RE.search(tags)
    return m.group(1) if m else None


def format_description(description: Optional[str], extra_fields: Optional[Dict[str, str]]) -> str:
    """Original description first, then a sorted table of the Notion fields."""
    parts: List[str] = []
    if description:
        parts.append(f"<p>{html.escape(description)}</p>\n")

    rows = sorted((k, v) for k, v in (extra_fields or {}).items() if v)
    if rows:
        parts.append("<h3>Notion Details</h3>\n")
        parts.append(
            '<table border="1" cellpadding="5" cellspacing="0" style="border-collapse: collapse;">\n'
        )
        parts.append("<tbody>\n")
        for name, value in rows:
            escaped = html.escape(value)
            if value.startswith(("http://", "https://")):
                shown = f'<a href="{escaped}">{escaped}</a>'
            else:
                shown = escaped
            parts.append(f"<tr><td><strong>{html.escape(name)}</strong></td><td>{shown}</td></tr>\n")
        parts.append("</tbody>\n</table>\n")

    return "".join(parts) or "<p>(No description provided)</p>"


def _add(path: str, value: Any) -> Dict[str, Any]:
    return {"op": "add", "path": path, "value": value}


class AdoClient(ApiClient):
    """Creates, reads and transitions work items in one Azure DevOps project"""

    service_name = "Azure DevOps"

    def __init__(
        self,
        org_url: str,
        project: str,
        rules: MappingRules,
        *,
        pat: Optional[str] = None,
        access_token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        if access_token:
            headers = {"Authorization": f"Bearer {access_token}"}
            auth = None
        elif pat:
            headers = {}
            auth = httpx.BasicAuth("", pat)
        else:
            raise ValueError("Azure DevOps client needs a PAT or an OAuth access token")

        self.org_url = org_url.rstrip("/")
        self.project = project
        self.rules = rules
        super().__init__(
            f"{self.org_url}/{quote(project, safe='')}/_apis/wit",
            headers=headers,
            auth=auth,
            timeout=settings.http_timeout_seconds,
            transport=transport,
            cancel_event=cancel_event,
        )

    def _patch_request(self, method: str, path: str, ops: List[Dict[str, Any]]) -> Any:
        return self.request(
            method,
            path,
            params={"api-version": API_VERSION},
            json=ops,
            headers={"Content-Type": "application/json-patch+json"},
        )

    def test_connection(self) -> Dict[str, Any]:
        try:
            self.request("GET", "/workitemtypes", params={"api-version": API_VERSION})
            return {"success": True, "message": "Successfully connected to Azure DevOps"}
        except Exception as e:
            return {"success": False, "message": str(e)}

    def resolve_url(self, item_id: int) -> str:
        return f"{self.org_url}/{quote(self.project, safe='')}/_workitems/edit/{item_id}"

    def _resolve_assignee(self, identity: Optional[str]) -> Optional[str]:
        """Mapped ADO user, else the raw identity (ADO accepts emails as-is)."""
        if not identity:
            return None
        return self.rules.map_assignee_forward(identity) or identity

    def _classification_ops(self) -> List[Dict[str, Any]]:
        ops: List[Dict[str, Any]] = []
        if self.rules.work_type and self.rules.work_type_field:
            ops.append(_add(f"/fields/{self.rules.work_type_field}", self.rules.work_type))
        if self.rules.area_path:
            ops.append(_add("/fields/System.AreaPath", self.rules.area_path))
        return ops

    def create_item(
        self,
        title: str,
        description: Optional[str],
        state: str,
        assignee: Optional[str],
        source_id: str,
        extra_fields: Optional[Dict[str, str]] = None,
    ) -> TargetItem:
        """Create a linked work item.

        State is not sent on creation; ADO starts every item in its initial state
        and rejects most others there. A different state is applied by a follow-up
        transition whose failure does not undo the creation.
        """
        ops = [
            _add("/fields/System.Title", title),
            _add("/fields/System.Tags", f"{LINK_TAG}; {SOURCE_ID_TAG_PREFIX}{source_id}"),
        ]
        ops.extend(self._classification_ops())
        ops.append(_add("/fields/System.Description", format_description(description, extra_fields)))
        resolved = self._resolve_assignee(assignee)
        if resolved:
            ops.append(_add("/fields/System.AssignedTo", resolved))

        work_item_type = quote(self.rules.work_item_type, safe="")
        data = self._patch_request("POST", f"/workitems/${work_item_type}", ops)
        created = self.parse_work_item(data)
        logger.info(f"Created work item #{created.id} for Notion page {source_id}")

        if state and state != self.rules.initial_target_state:
            try:
                return self.update_state(created.id, state, assignee)
            except SyncCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Created work item #{created.id} but couldn't set state to '{state}': {e}")
        return created

    def create_child(self, title: str, parent_id: int, source_id: str) -> TargetItem:
        ops = [
            _add("/fields/System.Title", title),
            _add("/fields/System.Tags", f"{LINK_TAG}; {CHILD_SOURCE_ID_TAG_PREFIX}{source_id}"),
            _add(
                "/relations/-",
                {
                    "rel": "System.LinkTypes.Hierarchy-Reverse",
                    "url": f"{self.org_url}/_apis/wit/workItems/{parent_id}",
                },
            ),
        ]
        if self.rules.area_path:
            ops.append(_add("/fields/System.AreaPath", self.rules.area_path))

        work_item_type = quote(self.rules.child_work_item_type, safe="")
        data = self._patch_request("POST", f"/workitems/${work_item_type}", ops)
        child = self.parse_work_item(data)
        logger.info(f"Created child work item #{child.id} under #{parent_id}")
        return child

    def update_state(
        self, item_id: int, new_state: str, assignee: Optional[str] = None
    ) -> TargetItem:
        ops = [_add("/fields/System.State", new_state)]
        resolved = self._resolve_assignee(assignee)
        if resolved:
            ops.append(_add("/fields/System.AssignedTo", resolved))
        try:
            data = self._patch_request("PATCH", f"/workitems/{int(item_id)}", ops)
        except TransientAdapterError as e:
            message = str(e)
            if e.status_code == 400 and (
                INVALID_TRANSITION_MARKER in message or ("State" in message and "not" in message)
            ):
                raise InvalidTransitionError(message, to_state=new_state) from e
            raise
        return self.parse_work_item(data)

    def fetch_one(self, item_id: Any) -> Optional[TargetItem]:
        try:
            numeric_id = int(item_id)
        except (TypeError, ValueError):
            return None
        try:
            data = self.request(
                "GET", f"/workitems/{numeric_id}", params={"api-version": API_VERSION}
            )
        except NotFoundError:
            return None
        return self.parse_work_item(data)

    def fetch_linked_items(self) -> List[TargetItem]:
        """Work items carrying the link tag, most recently changed first"""
        project = self.project.replace("'", "''")
        work_item_type = self.rules.work_item_type.replace("'", "''")
        query = (
            "SELECT [System.Id] FROM WorkItems "
            f"WHERE [System.TeamProject] = '{project}' "
            f"AND [System.Tags] CONTAINS '{LINK_TAG}' "
            f"AND [System.WorkItemType] = '{work_item_type}' "
            "ORDER BY [System.ChangedDate] DESC"
        )
        result = self.request(
            "POST", "/wiql", params={"api-version": API_VERSION}, json={"query": query}
        ) or {}
        ids = [wi["id"] for wi in result.get("workItems") or [] if wi.get("id") is not None]

        items: List[TargetItem] = []
        for start in range(0, len(ids), BATCH_SIZE):
            batch = self.request(
                "POST",
                "/workitemsbatch",
                params={"api-version": API_VERSION},
                json={"ids": ids[start : start + BATCH_SIZE], "fields": _FIELDS},
            ) or {}
            items.extend(self.parse_work_item(wi) for wi in batch.get("value") or [] if wi)
        # Batch responses are not guaranteed to keep the WIQL order.
        items.sort(key=lambda i: i.changed_at.timestamp() if i.changed_at else 0.0, reverse=True)
        return items

    def parse_work_item(self, data: Optional[Dict[str, Any]]) -> TargetItem:
        if not data or not data.get("id") or not isinstance(data.get("fields"), dict):
            raise TransientAdapterError("Invalid work item response from Azure DevOps")
        fields = data["fields"]
        assigned = fields.get("System.AssignedTo")
        if isinstance(assigned, dict):
            assignee = assigned.get("displayName") or None
        else:
            assignee = assigned or None
        return TargetItem(
            id=int(data["id"]),
            title=fields.get("System.Title") or "",
            description=fields.get("System.Description") or "",
            state=fields.get("System.State") or "",
            assignee=assignee,
            changed_at=parse_timestamp(fields.get("System.ChangedDate")),
            source_id=source_id_from_tags(fields.get("System.Tags")),
        )
