"""Notion API client (sync source side)"""

import logging
import re
import threading
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.services import notion_properties as props
from app.services.errors import NotFoundError, SyncCancelledError
from app.services.http_client import ApiClient
from app.services.mapping import MappingRules
from app.services.sync_types import ChildItem, SourceItem, parse_timestamp

logger = logging.getLogger(__name__)

_WORK_ITEM_URL_RE = re.compile(r"_workitems/edit/(\d+)")

SOURCE_LINK_FIELD = "Notion Link"


def target_id_from_url(url: Optional[str]) -> Optional[str]:
    """Extract the work item id from .../_workitems/edit/12345"""
    if not url:
        return None
    m = _WORK_ITEM_URL_RE.search(url)
    return m.group(1) if m else None


class NotionClient(ApiClient):
    """Reads and selectively writes pages of one or more Notion databases"""

    service_name = "Notion"

    def __init__(
        self,
        token: str,
        database_ids: List[str],
        rules: MappingRules,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        super().__init__(
            settings.notion_api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Notion-Version": settings.notion_version,
                "Content-Type": "application/json",
            },
            timeout=settings.http_timeout_seconds,
            transport=transport,
            cancel_event=cancel_event,
        )
        self.database_ids = list(database_ids)
        self.rules = rules
        # Ids of pages dropped by the last fetch_all() because they had no title.
        self.dropped_ids: List[str] = []
        self._users: Optional[List[Dict[str, Any]]] = None

    def test_connection(self) -> Dict[str, Any]:
        """Check that every configured database is reachable"""
        try:
            for database_id in self.database_ids:
                self.request("GET", f"/databases/{database_id}")
            return {"success": True, "message": "Successfully connected to Notion"}
        except Exception as e:
            return {"success": False, "message": str(e)}

    def fetch_all(self) -> List[SourceItem]:
        """All titled pages of all configured databases, paginated to exhaustion"""
        items: List[SourceItem] = []
        self.dropped_ids = []
        for database_id in self.database_ids:
            cursor: Optional[str] = None
            while True:
                body: Dict[str, Any] = {"page_size": 100}
                if cursor:
                    body["start_cursor"] = cursor
                data = self.request("POST", f"/databases/{database_id}/query", json=body) or {}
                for page in data.get("results") or []:
                    if page.get("object") != "page" or "properties" not in page:
                        continue
                    item = self.parse_page(page)
                    if item is None:
                        self.dropped_ids.append(page.get("id", ""))
                    else:
                        items.append(item)
                cursor = data.get("next_cursor") if data.get("has_more") else None
                if not cursor:
                    break
        return items

    def fetch_one(self, item_id: str) -> Optional[SourceItem]:
        page = self._get_page(item_id)
        if page is None:
            return None
        return self.parse_page(page)

    def _get_page(self, page_id: str) -> Optional[Dict[str, Any]]:
        try:
            page = self.request("GET", f"/pages/{page_id}")
        except NotFoundError:
            return None
        if not page or page.get("archived") or page.get("in_trash"):
            return None
        return page

    def parse_page(self, page: Dict[str, Any]) -> Optional[SourceItem]:
        """Normalize a Notion page. Returns None for pages without a title."""
        properties: Dict[str, Any] = page.get("properties") or {}
        title = props.title_of(properties)
        if not title:
            logger.warning(f"Skipping Notion page {page.get('id')} - no title found")
            return None

        rules = self.rules
        target_url = props.url_of(properties.get(rules.target_url_property))
        target_id = props.text_or_number_of(
            properties.get(rules.target_id_property)
        ) or target_id_from_url(target_url)

        return SourceItem(
            id=page["id"],
            title=title,
            description=props.rich_text_of(properties.get(rules.description_property)),
            status=props.status_of(properties.get(rules.status_property)),
            assignee=props.first_person_email(properties.get(rules.assignee_property)),
            target_id=target_id,
            target_url=target_url,
            last_modified_at=parse_timestamp(page.get("last_edited_time")),
            extra_fields=self._extra_fields(page, properties),
            child_ids=(
                props.relation_ids(properties.get(rules.subtask_property))
                if rules.subtask_property
                else []
            ),
        )

    def _extra_fields(self, page: Dict[str, Any], properties: Dict[str, Any]) -> Dict[str, str]:
        fields: Dict[str, str] = {}
        if page.get("url"):
            fields[SOURCE_LINK_FIELD] = page["url"]
        skip = {self.rules.target_id_property, self.rules.target_url_property}
        for name, prop in properties.items():
            if name in skip:
                continue
            value = props.display_value(prop)
            if value:
                fields[name] = value
        return fields

    def write_back_link(self, item_id: str, target_url: str) -> None:
        """Set only the cross-link URL property"""
        self.request(
            "PATCH",
            f"/pages/{item_id}",
            json={"properties": {self.rules.target_url_property: {"url": target_url}}},
        )
        logger.info(f"Linked Notion page {item_id} to {target_url}")

    def fetch_children(self, ids: List[str]) -> List[ChildItem]:
        """Best-effort subtask lookup; failed or untitled children are omitted"""
        children: List[ChildItem] = []
        for child_id in ids:
            try:
                page = self._get_page(child_id)
            except SyncCancelledError:
                raise
            except Exception as e:
                logger.warning(f"Could not fetch subtask {child_id}: {e}")
                continue
            if page is None:
                logger.warning(f"Subtask {child_id} not found")
                continue
            properties = page.get("properties") or {}
            title = props.title_of(properties)
            if not title:
                continue
            children.append(
                ChildItem(
                    id=child_id,
                    title=title,
                    status=props.status_of(properties.get(self.rules.status_property)),
                )
            )
        return children

    def find_user_id(self, email: str) -> Optional[str]:
        """Notion user id for a person email (case-insensitive), or None"""
        if self._users is None:
            users: List[Dict[str, Any]] = []
            cursor: Optional[str] = None
            while True:
                params = {"page_size": 100}
                if cursor:
                    params["start_cursor"] = cursor
                data = self.request("GET", "/users", params=params) or {}
                users.extend(data.get("results") or [])
                cursor = data.get("next_cursor") if data.get("has_more") else None
                if not cursor:
                    break
            self._users = users
        wanted = email.lower()
        for user in self._users:
            if user.get("type") != "person":
                continue
            user_email = (user.get("person") or {}).get("email")
            if user_email and user_email.lower() == wanted:
                return user.get("id")
        return None

    def apply_target_update(
        self,
        item_id: str,
        title: Optional[str] = None,
        status: Optional[str] = None,
        assignee: Optional[str] = None,
    ) -> List[str]:
        """Write only the supplied fields. Returns warnings for fields left untouched."""
        warnings: List[str] = []
        properties: Dict[str, Any] = {}

        if title or status:
            page = self._get_page(item_id)
            if page is None:
                raise NotFoundError(f"Notion page {item_id} not found")
            current = page.get("properties") or {}
            if title:
                title_name = props.title_property_name(current)
                if title_name:
                    properties[title_name] = {"title": [{"type": "text", "text": {"content": title}}]}
                else:
                    warnings.append("title property not found; title left unchanged")
            if status:
                status_name = self.rules.status_property
                # Status may be backed by a `status` or a `select` property.
                kind = (current.get(status_name) or {}).get("type")
                kind = kind if kind in ("status", "select") else "status"
                properties[status_name] = {kind: {"name": status}}

        if assignee:
            try:
                user_id = self.find_user_id(assignee)
            except Exception as e:
                user_id = None
                warnings.append(f"user lookup failed for {assignee}: {e}")
            else:
                if user_id is None:
                    warnings.append(f"no Notion user with email {assignee}; assignee left unchanged")
            if user_id:
                properties[self.rules.assignee_property] = {"people": [{"id": user_id}]}

        for warning in warnings:
            logger.warning(f"Notion page {item_id}: {warning}")

        if properties:
            self.request("PATCH", f"/pages/{item_id}", json={"properties": properties})
            logger.info(f"Updated Notion page {item_id}: {', '.join(properties)}")
        return warnings
