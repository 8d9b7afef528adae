"""Bidirectional Notion <-> Azure DevOps synchronization"""

import logging
import threading
from typing import List, Optional, Set

from app.config import settings
from app.services.errors import AuthError, SyncCancelledError, is_invalid_transition
from app.services.events import EventSink
from app.services.mapping import MappingRules
from app.services.sync_types import (
    SourceAdapter,
    SourceItem,
    SyncAction,
    SyncDirection,
    SyncErrorEntry,
    SyncOutcome,
    SyncRunResult,
    TargetAdapter,
    TargetItem,
)

logger = logging.getLogger(__name__)

PHASE_SOURCE_TO_TARGET = SyncDirection.SOURCE_TO_TARGET.value
PHASE_TARGET_TO_SOURCE = SyncDirection.TARGET_TO_SOURCE.value

_COUNTERS = {
    SyncAction.CREATED: "created",
    SyncAction.UPDATED_TARGET: "updated_target",
    SyncAction.UPDATED_SOURCE: "updated_source",
    SyncAction.SKIPPED: "skipped",
}


class SyncService:
    """Runs one reconciliation pass pair between a Notion source and an ADO target.

    Items are processed strictly one at a time with a fixed pause after each
    one. Per-item failures become `error` outcomes; AuthError aborts the run.
    """

    def __init__(
        self,
        source: SourceAdapter,
        target: TargetAdapter,
        rules: MappingRules,
        *,
        sink: Optional[EventSink] = None,
        item_delay_seconds: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.source = source
        self.target = target
        self.rules = rules
        self.sink = sink or EventSink()
        self.item_delay_seconds = (
            settings.sync_item_delay_seconds if item_delay_seconds is None else item_delay_seconds
        )
        self.cancel_event = cancel_event or threading.Event()

        self.dry_run = False
        self.result = SyncRunResult()
        # Notion pages written during pass 1 of this run. Their last_edited_time
        # is inflated by our own write, so pass 2 must not compare it.
        self.touched_by_sync: Set[str] = set()

    def run(
        self,
        direction: SyncDirection = SyncDirection.BOTH,
        dry_run: bool = False,
        limit: Optional[int] = None,
    ) -> SyncRunResult:
        """Run the enabled passes and return the aggregated result"""
        direction = SyncDirection(direction)
        self.dry_run = dry_run
        self.result = SyncRunResult()
        self.touched_by_sync = set()

        if dry_run:
            self._log("[DRY RUN] No changes will be written")

        try:
            if direction.includes_source_to_target:
                self._sync_source_to_target(limit)
            if direction.includes_target_to_source and not self._should_stop():
                self._sync_target_to_source()
        except SyncCancelledError:
            self.cancel_event.set()

        # A cancel that lands during the last item or pause still counts.
        self._should_stop()
        self._log_summary()
        return self.result

    # -- bookkeeping -------------------------------------------------------

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        self.result.logs.append(message)
        self.sink.log(message)

    def _record(self, outcome: SyncOutcome) -> None:
        counter = _COUNTERS.get(outcome.action)
        if counter:
            setattr(self.result, counter, getattr(self.result, counter) + 1)
        self.result.items.append(outcome)
        self.sink.item(outcome)

    def _skip(self, item_id: str, title: str, status: Optional[str], target_id: Optional[str], detail: str):
        self._record(SyncOutcome(item_id, title, SyncAction.SKIPPED, status, target_id, detail))

    def _record_error(
        self,
        item_id: str,
        title: str,
        status: Optional[str],
        target_id: Optional[str],
        message: str,
        error_source_id: Optional[str] = None,
    ) -> None:
        self._record(SyncOutcome(item_id, title, SyncAction.ERROR, status, target_id, message))
        self.result.errors.append(
            SyncErrorEntry(error_source_id if error_source_id is not None else item_id, title, message)
        )

    def _should_stop(self) -> bool:
        if not self.cancel_event.is_set():
            return False
        if not self.result.cancelled:
            self.result.cancelled = True
            self._log("Sync cancelled", logging.WARNING)
        return True

    def _pause(self) -> None:
        if self.item_delay_seconds > 0:
            # Returns early when the run is cancelled.
            self.cancel_event.wait(self.item_delay_seconds)

    # -- mapping with diagnostics -------------------------------------------

    def _map_forward(self, status: Optional[str]) -> str:
        if status and not self.rules.has_forward_mapping(status):
            self._log(
                f'No status mapping found for "{status}", using default: {self.rules.default_target_state}'
            )
        return self.rules.map_forward(status)

    def _map_backward(self, state: Optional[str]) -> str:
        if state and not self.rules.has_backward_mapping(state):
            self._log(
                f'No reverse status mapping found for "{state}", using default: {self.rules.default_source_status}'
            )
        return self.rules.map_backward(state)

    # -- pass 1: Notion -> ADO -----------------------------------------------

    def _sync_source_to_target(self, limit: Optional[int]) -> None:
        self._log("=== Notion → ADO Sync ===")
        items = self.source.fetch_all()
        self._log(f"Found {len(items)} items in Notion")
        for dropped_id in getattr(self.source, "dropped_ids", None) or []:
            self._log(f"Ignored Notion page {dropped_id} - no title", logging.WARNING)

        if limit and limit > 0:
            pending = [i for i in items if not i.target_id and not i.target_url]
            self._log(f"  {len(pending)} items need to be created")
            items = pending[:limit]
            self._log(f"  Processing {len(items)} item(s) due to limit {limit}")

        total = len(items)
        for index, item in enumerate(items, start=1):
            if self._should_stop():
                return
            self.sink.progress(index, total, PHASE_SOURCE_TO_TARGET)
            try:
                self._process_source_item(item)
            except AuthError:
                raise
            except SyncCancelledError:
                raise
            except Exception as e:
                self._log(f'Error processing item "{item.title}": {e}', logging.ERROR)
                self._record_error(item.id, item.title, item.status, item.target_id, str(e))
            self._pause()

    def _process_source_item(self, item: SourceItem) -> None:
        # Never overwrite a link someone set by hand.
        if item.target_url and not item.target_id:
            self._log(f'Skipping "{item.title}" - has manual ADO link: {item.target_url}')
            self._skip(item.id, item.title, item.status, None, "Has manual ADO link")
            return

        desired_state = self._map_forward(item.status)
        if not item.target_id:
            self._create_in_target(item, desired_state)
        else:
            self._update_in_target(item, desired_state)

    def _create_in_target(self, item: SourceItem, desired_state: str) -> None:
        if self.dry_run:
            self._log(f'[DRY RUN] Would create work item for: "{item.title}"')
            self._log(f"  Status: {item.status} → {desired_state}")
            self._log(f"  Fields: {len(item.extra_fields)} properties")
            if item.child_ids:
                children = self.source.fetch_children(item.child_ids)
                self._log(f"  Subtasks: {len(children)} tasks would be created")
            self.touched_by_sync.add(item.id)
            self._record(
                SyncOutcome(
                    item.id,
                    item.title,
                    SyncAction.CREATED,
                    item.status,
                    None,
                    f"Would create in ADO with state: {desired_state}",
                )
            )
            return

        self._log(f'Creating work item for: "{item.title}"')
        created = self.target.create_item(
            item.title,
            item.description,
            desired_state,
            item.assignee,
            item.id,
            item.extra_fields,
        )
        url = self.target.resolve_url(created.id)
        self.source.write_back_link(item.id, url)
        self.touched_by_sync.add(item.id)
        self._log(f"  Created ADO work item #{created.id}: {url}")
        self._record(
            SyncOutcome(
                item.id,
                item.title,
                SyncAction.CREATED,
                item.status,
                str(created.id),
                f"Created ADO work item #{created.id}",
            )
        )

        if item.child_ids:
            self._create_children(item.child_ids, created.id)

    def _create_children(self, child_ids: List[str], parent_id: int) -> None:
        self._log(f"  Creating {len(child_ids)} subtask(s)...")
        for child in self.source.fetch_children(child_ids):
            if self.cancel_event.is_set():
                return
            try:
                task = self.target.create_child(child.title, parent_id, child.id)
            except (AuthError, SyncCancelledError):
                raise
            except Exception as e:
                self._log(f'    Failed to create task "{child.title}": {e}', logging.WARNING)
                continue
            self._log(f'    Created Task #{task.id}: "{child.title}"')
            self._pause()

    def _update_in_target(self, item: SourceItem, desired_state: str) -> None:
        try:
            target_id = int(item.target_id)
        except (TypeError, ValueError):
            self._log(f'Invalid ADO ID "{item.target_id}" for item "{item.title}"')
            self._skip(item.id, item.title, item.status, item.target_id, f"Invalid ADO ID: {item.target_id}")
            return

        current = self.target.fetch_one(str(target_id))
        if current is None:
            self._log(f'ADO work item #{target_id} not found for "{item.title}"')
            self._skip(
                item.id, item.title, item.status, str(target_id), f"ADO work item #{target_id} not found"
            )
            return

        if current.state == desired_state:
            self._log(f'Skipping "{item.title}" - no state change')
            self._skip(
                item.id, item.title, item.status, str(target_id), f"No state change (ADO: {current.state})"
            )
            return

        transition = f"{current.state} → {desired_state}"
        if self.dry_run:
            self._log(f'[DRY RUN] Would update work item #{target_id}: "{item.title}" ({transition})')
            self._record(
                SyncOutcome(
                    item.id,
                    item.title,
                    SyncAction.UPDATED_TARGET,
                    item.status,
                    str(target_id),
                    f"Would update state: {transition}",
                )
            )
            return

        self._log(f'Updating work item #{target_id}: "{item.title}" ({transition})')
        try:
            self.target.update_state(target_id, desired_state, item.assignee)
        except AuthError:
            raise
        except Exception as e:
            if not is_invalid_transition(e):
                raise
            self._log(f'  Cannot transition from "{current.state}" to "{desired_state}" - skipping update')
            self._log(f'     Notion status: "{item.status}" → ADO state: "{desired_state}"')
            self._skip(item.id, item.title, item.status, str(target_id), f"Cannot transition: {transition}")
            return

        self._record(
            SyncOutcome(
                item.id,
                item.title,
                SyncAction.UPDATED_TARGET,
                item.status,
                str(target_id),
                f"Updated state: {transition}",
            )
        )

    # -- pass 2: ADO -> Notion -----------------------------------------------

    def _sync_target_to_source(self) -> None:
        self._log("=== ADO → Notion Sync ===")
        work_items = self.target.fetch_linked_items()
        self._log(f"Found {len(work_items)} linked work items in ADO")

        total = len(work_items)
        for index, work_item in enumerate(work_items, start=1):
            if self._should_stop():
                return
            self.sink.progress(index, total, PHASE_TARGET_TO_SOURCE)
            try:
                self._process_target_item(work_item)
            except AuthError:
                raise
            except SyncCancelledError:
                raise
            except Exception as e:
                self._log(
                    f'Error processing ADO item #{work_item.id} "{work_item.title}": {e}', logging.ERROR
                )
                self._record_error(
                    work_item.source_id or f"ado-{work_item.id}",
                    work_item.title,
                    work_item.state,
                    str(work_item.id),
                    str(e),
                    error_source_id=work_item.source_id or "",
                )
            self._pause()

    def _process_target_item(self, work_item: TargetItem) -> None:
        target_id = str(work_item.id)
        if not work_item.source_id:
            self._log(f"Skipping ADO #{work_item.id} - no Notion ID found in tags")
            self._skip(f"ado-{work_item.id}", work_item.title, work_item.state, target_id, "No Notion ID found")
            return

        source_item = self.source.fetch_one(work_item.source_id)
        if source_item is None:
            self._log(f"Notion page {work_item.source_id} not found for ADO #{work_item.id}")
            self._skip(work_item.source_id, work_item.title, work_item.state, target_id, "Notion page not found")
            return

        if work_item.source_id not in self.touched_by_sync:
            source_time = source_item.last_modified_at
            target_time = work_item.changed_at
            if source_time is None or target_time is None:
                self._log(f'Skipping "{work_item.title}" - cannot compare timestamps')
                self._skip(source_item.id, work_item.title, work_item.state, target_id, "Cannot compare timestamps")
                return
            if source_time >= target_time:
                self._log(f'Skipping "{work_item.title}" - Notion is newer or equal')
                self._skip(source_item.id, work_item.title, work_item.state, target_id, "Notion is newer or equal")
                return

        changes: List[str] = []
        new_status = self._map_backward(work_item.state)
        status_changed = new_status != source_item.status
        if status_changed:
            changes.append(f"status: {source_item.status} → {new_status}")

        title_changed = bool(work_item.title) and work_item.title != source_item.title
        if title_changed:
            changes.append(f"title: {source_item.title} → {work_item.title}")

        # An unmapped ADO identity is unknown, never a reason to clear Notion's assignee.
        new_assignee = self.rules.map_assignee_backward(work_item.assignee)
        assignee_changed = new_assignee is not None and new_assignee != source_item.assignee
        if assignee_changed:
            changes.append(f"assignee: {source_item.assignee} → {new_assignee}")

        if not changes:
            self._log(f'Skipping "{work_item.title}" - no changes detected')
            self._skip(source_item.id, work_item.title, work_item.state, target_id, "No changes detected")
            return

        summary = ", ".join(changes)
        if self.dry_run:
            self._log(f'[DRY RUN] Would update Notion from ADO #{work_item.id}: "{work_item.title}"')
            self._log(f"  Changes: {summary}")
            self._record(
                SyncOutcome(
                    source_item.id,
                    work_item.title,
                    SyncAction.UPDATED_SOURCE,
                    work_item.state,
                    target_id,
                    f"Would update: {summary}",
                )
            )
            return

        self._log(f'Updating Notion from ADO #{work_item.id}: "{work_item.title}"')
        self._log(f"  Changes: {summary}")
        warnings = self.source.apply_target_update(
            source_item.id,
            title=work_item.title if title_changed else None,
            status=new_status if status_changed else None,
            assignee=new_assignee if assignee_changed else None,
        )
        for warning in warnings or []:
            self._log(f"  Warning: {warning}", logging.WARNING)

        self._record(
            SyncOutcome(
                source_item.id,
                work_item.title,
                SyncAction.UPDATED_SOURCE,
                work_item.state,
                target_id,
                summary,
            )
        )

    def _log_summary(self) -> None:
        result = self.result
        self._log("--- Sync Complete ---")
        if result.cancelled:
            self._log("Run was cancelled before all items were processed")
        self._log(f"Created in ADO: {result.created}")
        self._log(f"Updated in ADO: {result.updated_target}")
        self._log(f"Updated in Notion: {result.updated_source}")
        self._log(f"Skipped: {result.skipped}")
        if result.errors:
            self._log(f"Errors: {result.error_count}")
            for error in result.errors:
                self._log(f'  - "{error.title}": {error.message}')
