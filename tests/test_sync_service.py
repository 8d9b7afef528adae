import logging
import threading
import unittest
from datetime import datetime, timedelta, timezone

logging.disable(logging.CRITICAL)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
INVALID = "TF401320: Value '{to}' for field 'State' is not in the list of supported values"


class _FakeSource:
    """In-memory Notion stand-in"""

    def __init__(self, items=(), children=None, dropped_ids=()):
        self.items = {i.id: i for i in items}
        self.children = dict(children or {})
        self.dropped_ids = list(dropped_ids)
        self.calls = []
        self.clock = T0 + timedelta(days=1)
        self.children_fetched = []

    def fetch_all(self):
        from dataclasses import replace

        return [replace(i) for i in self.items.values()]

    def fetch_one(self, item_id):
        from dataclasses import replace

        item = self.items.get(item_id)
        return replace(item) if item else None

    def write_back_link(self, item_id, target_url):
        self.calls.append(("write_back_link", item_id, target_url))
        item = self.items[item_id]
        item.target_url = target_url
        item.target_id = target_url.rsplit("/", 1)[-1]
        # Writing a property bumps Notion's last_edited_time.
        item.last_modified_at = self.clock

    def apply_target_update(self, item_id, title=None, status=None, assignee=None):
        self.calls.append(("apply_target_update", item_id, title, status, assignee))
        item = self.items[item_id]
        if title:
            item.title = title
        if status:
            item.status = status
        if assignee:
            item.assignee = assignee
        item.last_modified_at = self.clock
        return []

    def fetch_children(self, ids):
        self.children_fetched.append(list(ids))
        return [self.children[i] for i in ids if i in self.children]


class _FakeTarget:
    """In-memory Azure DevOps stand-in"""

    def __init__(self, items=(), forbidden=(), fail_create_for=(), fail_child_for=()):
        self.items = {i.id: i for i in items}
        self.forbidden = set(forbidden)
        self.fail_create_for = set(fail_create_for)
        self.fail_child_for = set(fail_child_for)
        self.calls = []
        self.next_id = 100

    def _new(self, title, source_id):
        from app.services.sync_types import TargetItem

        self.next_id += 1
        item = TargetItem(id=self.next_id, title=title, state="New", changed_at=T0, source_id=source_id)
        self.items[item.id] = item
        return item

    def create_item(self, title, description, state, assignee, source_id, extra_fields=None):
        self.calls.append(("create_item", title, state, assignee, source_id))
        if source_id in self.fail_create_for:
            raise RuntimeError("ADO exploded")
        item = self._new(title, source_id)
        item.assignee = assignee
        item.state = state
        return item

    def create_child(self, title, parent_id, source_id):
        self.calls.append(("create_child", title, parent_id, source_id))
        if source_id in self.fail_child_for:
            raise RuntimeError("child failed")
        from app.services.sync_types import TargetItem

        self.next_id += 1
        # Tasks are a different work item type, so linked-item queries never see them.
        return TargetItem(id=self.next_id, title=title, state="New", changed_at=T0)

    def update_state(self, item_id, new_state, assignee=None):
        self.calls.append(("update_state", item_id, new_state, assignee))
        item = self.items[item_id]
        if (item.state, new_state) in self.forbidden:
            raise RuntimeError(INVALID.format(to=new_state))
        item.state = new_state
        return item

    def fetch_one(self, item_id):
        from dataclasses import replace

        item = self.items.get(int(item_id))
        return replace(item) if item else None

    def fetch_linked_items(self):
        from dataclasses import replace

        linked = [replace(i) for i in self.items.values()]
        return sorted(linked, key=lambda i: i.changed_at, reverse=True)

    def resolve_url(self, item_id):
        return f"https://dev.azure.com/o/p/_workitems/edit/{item_id}"

    def mutating_calls(self):
        return [c for c in self.calls if c[0] in ("create_item", "create_child", "update_state")]


class _RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def log(self, message):
        self.emit({"type": "log", "message": message})

    def progress(self, current, total, phase):
        self.emit({"type": "progress", "current": current, "total": total, "phase": phase})

    def item(self, outcome):
        self.emit({"type": "item", **outcome.to_dict()})


def _source_item(item_id, **kwargs):
    from app.services.sync_types import SourceItem

    kwargs.setdefault("title", f"Item {item_id}")
    kwargs.setdefault("last_modified_at", T0)
    return SourceItem(id=item_id, **kwargs)


def _target_item(item_id, **kwargs):
    from app.services.sync_types import TargetItem

    kwargs.setdefault("title", f"Work {item_id}")
    kwargs.setdefault("changed_at", T0)
    return TargetItem(id=item_id, **kwargs)


def _rules(**kwargs):
    from app.services.mapping import MappingRules

    return MappingRules(**kwargs)


def _service(source, target, rules=None, **kwargs):
    from app.services.sync_service import SyncService

    kwargs.setdefault("item_delay_seconds", 0)
    return SyncService(source, target, rules or _rules(), **kwargs)


def _actions(result):
    return [(o.source_id, o.action.value) for o in result.items]


class SourceToTargetTests(unittest.TestCase):
    def test_new_item_is_created_and_linked(self):
        from app.services.sync_types import SyncAction, SyncDirection

        source = _FakeSource([_source_item("s1", status="Done")])
        target = _FakeTarget()
        rules = _rules(status_map={"Done": "Closed"}, default_target_state="New")

        result = _service(source, target, rules).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertEqual(result.created, 1)
        self.assertEqual(result.items[0].action, SyncAction.CREATED)
        self.assertEqual(target.calls[0], ("create_item", "Item s1", "Closed", None, "s1"))
        self.assertEqual(
            source.calls, [("write_back_link", "s1", "https://dev.azure.com/o/p/_workitems/edit/101")]
        )
        self.assertEqual(result.items[0].target_id, "101")

    def test_unmapped_status_uses_default_and_is_logged(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource([_source_item("s1", status="Blocked")])
        target = _FakeTarget()

        result = _service(source, target, _rules(default_target_state="New")).run(
            SyncDirection.SOURCE_TO_TARGET
        )

        self.assertEqual(target.calls[0][2], "New")
        self.assertTrue(any('No status mapping found for "Blocked"' in line for line in result.logs))

    def test_update_path_transitions_changed_state(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource([_source_item("s1", status="Doing", target_id="5", assignee="a@x.com")])
        target = _FakeTarget([_target_item(5, state="New", source_id="s1")])
        rules = _rules(status_map={"Doing": "Active"})

        result = _service(source, target, rules).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertEqual(result.updated_target, 1)
        self.assertEqual(target.calls, [("update_state", 5, "Active", "a@x.com")])
        self.assertEqual(result.items[0].detail, "Updated state: New → Active")

    def test_unchanged_state_is_skipped(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource([_source_item("s1", status="Doing", target_id="5")])
        target = _FakeTarget([_target_item(5, state="Active", source_id="s1")])

        result = _service(source, target, _rules(status_map={"doing": "Active"})).run(
            SyncDirection.SOURCE_TO_TARGET
        )

        self.assertEqual(result.skipped, 1)
        self.assertEqual(result.items[0].detail, "No state change (ADO: Active)")
        self.assertEqual(target.mutating_calls(), [])

    def test_missing_or_invalid_target_is_skipped(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource(
            [_source_item("s1", target_id="999"), _source_item("s2", target_id="abc")]
        )

        result = _service(source, _FakeTarget()).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertEqual(result.skipped, 2)
        self.assertEqual(result.error_count, 0)
        self.assertEqual(result.items[0].detail, "ADO work item #999 not found")
        self.assertEqual(result.items[1].detail, "Invalid ADO ID: abc")

    def test_invalid_transition_is_a_skip_not_an_error(self):
        from app.services.sync_types import SyncAction, SyncDirection

        source = _FakeSource([_source_item("s1", status="Done", target_id="5")])
        target = _FakeTarget(
            [_target_item(5, state="Active", source_id="s1")], forbidden={("Active", "Closed")}
        )

        result = _service(source, target, _rules(status_map={"Done": "Closed"})).run(
            SyncDirection.SOURCE_TO_TARGET
        )

        self.assertEqual(result.items[0].action, SyncAction.SKIPPED)
        self.assertIn("Active → Closed", result.items[0].detail)
        self.assertEqual(result.error_count, 0)
        self.assertEqual(result.skipped, 1)

    def test_manual_link_is_always_preserved(self):
        from app.services.sync_types import SyncDirection

        for status in ("Done", "Doing", None):
            with self.subTest(status=status):
                source = _FakeSource(
                    [_source_item("s1", status=status, target_url="https://example.com/board/1")]
                )
                target = _FakeTarget()
                service = _service(source, target, _rules(status_map={"Done": "Closed"}))

                for _ in range(2):
                    result = service.run(SyncDirection.SOURCE_TO_TARGET)
                    self.assertEqual(_actions(result), [("s1", "skipped")])
                    self.assertEqual(result.items[0].detail, "Has manual ADO link")

                self.assertEqual(target.calls, [])
                self.assertEqual(source.calls, [])

    def test_second_run_is_idempotent(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource(
            [
                _source_item("s1", status="Done"),
                _source_item("s2", status="Doing"),
                _source_item("s3"),
            ]
        )
        target = _FakeTarget()
        service = _service(source, target, _rules(status_map={"Done": "Closed", "Doing": "Active"}))

        first = service.run(SyncDirection.SOURCE_TO_TARGET)
        second = service.run(SyncDirection.SOURCE_TO_TARGET)

        self.assertEqual(first.created, 3)
        self.assertEqual(second.created, 0)
        self.assertEqual(second.updated_target, 0)
        self.assertEqual(second.skipped, 3)

    def test_item_failure_does_not_stop_the_pass(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource([_source_item("s1"), _source_item("s2")])
        target = _FakeTarget(fail_create_for={"s1"})

        result = _service(source, target).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertEqual(_actions(result), [("s1", "error"), ("s2", "created")])
        self.assertEqual(result.error_count, 1)
        self.assertEqual(result.errors[0].to_dict(), {"source_id": "s1", "title": "Item s1", "message": "ADO exploded"})

    def test_auth_error_aborts_the_run(self):
        from app.services.errors import AuthError
        from app.services.sync_types import SyncDirection

        class _RejectingTarget(_FakeTarget):
            def create_item(self, *args, **kwargs):
                raise AuthError("token revoked")

        source = _FakeSource([_source_item("s1"), _source_item("s2")])

        with self.assertRaises(AuthError):
            _service(source, _RejectingTarget()).run(SyncDirection.SOURCE_TO_TARGET)

    def test_children_are_created_and_failures_tolerated(self):
        from app.services.sync_types import ChildItem, SyncDirection

        children = {"c1": ChildItem("c1", "Child 1"), "c2": ChildItem("c2", "Child 2")}
        source = _FakeSource([_source_item("s1", child_ids=["c1", "c2", "c3"])], children=children)
        target = _FakeTarget(fail_child_for={"c1"})

        result = _service(source, target).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertEqual(result.created, 1)
        self.assertEqual(result.error_count, 0)
        child_calls = [c for c in target.calls if c[0] == "create_child"]
        self.assertEqual(child_calls, [("create_child", "Child 1", 101, "c1"), ("create_child", "Child 2", 101, "c2")])
        self.assertTrue(any('Failed to create task "Child 1"' in line for line in result.logs))

    def test_limit_applies_to_unlinked_items_only(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource(
            [
                _source_item("s1", target_id="5"),
                _source_item("s2", target_url="https://example.com/x"),
                _source_item("s3"),
                _source_item("s4"),
                _source_item("s5"),
            ]
        )
        target = _FakeTarget([_target_item(5, source_id="s1")])

        result = _service(source, target).run(SyncDirection.SOURCE_TO_TARGET, limit=2)

        self.assertEqual(_actions(result), [("s3", "created"), ("s4", "created")])

    def test_unassigned_identity_is_passed_through_not_guessed(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource(
            [_source_item("s1", assignee="stranger@example.com"), _source_item("s2")]
        )
        target = _FakeTarget()
        rules = _rules(assignee_map={"known@example.com": "Known User"})

        _service(source, target, rules).run(SyncDirection.SOURCE_TO_TARGET)

        assignees = [c[3] for c in target.calls if c[0] == "create_item"]
        self.assertEqual(assignees, ["stranger@example.com", None])

    def test_dropped_items_are_logged(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource([], dropped_ids=["p-untitled"])

        result = _service(source, _FakeTarget()).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertTrue(any("p-untitled" in line for line in result.logs))


class TargetToSourceTests(unittest.TestCase):
    def test_newer_target_updates_only_changed_status(self):
        from app.services.sync_types import SyncAction, SyncDirection

        source = _FakeSource([_source_item("s1", title="Same", status="Not started", target_id="7")])
        target = _FakeTarget(
            [_target_item(7, title="Same", state="Active", source_id="s1", changed_at=T0 + timedelta(hours=1))]
        )
        rules = _rules(reverse_status_map={"Active": "In Progress"})

        result = _service(source, target, rules).run(SyncDirection.TARGET_TO_SOURCE)

        self.assertEqual(result.updated_source, 1)
        self.assertEqual(result.items[0].action, SyncAction.UPDATED_SOURCE)
        self.assertIn("status: Not started → In Progress", result.items[0].detail)
        self.assertEqual(source.calls, [("apply_target_update", "s1", None, "In Progress", None)])

    def test_title_and_mapped_assignee_changes(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource(
            [_source_item("s1", title="Old", status="Doing", assignee="a@x.com")]
        )
        target = _FakeTarget(
            [
                _target_item(
                    7,
                    title="New",
                    state="Active",
                    assignee="Bob Jones",
                    source_id="s1",
                    changed_at=T0 + timedelta(hours=1),
                )
            ]
        )
        rules = _rules(
            reverse_status_map={"Active": "Doing"},
            reverse_assignee_map={"Bob Jones": "bob@x.com"},
        )

        result = _service(source, target, rules).run(SyncDirection.TARGET_TO_SOURCE)

        self.assertEqual(result.items[0].detail, "title: Old → New, assignee: a@x.com → bob@x.com")
        self.assertEqual(source.calls, [("apply_target_update", "s1", "New", None, "bob@x.com")])

    def test_unmapped_target_assignee_is_not_a_change(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource([_source_item("s1", status="Doing", assignee="a@x.com")])
        target = _FakeTarget(
            [
                _target_item(
                    7,
                    title="Item s1",
                    state="Active",
                    assignee="Stranger",
                    source_id="s1",
                    changed_at=T0 + timedelta(hours=1),
                )
            ]
        )

        result = _service(source, target, _rules(reverse_status_map={"Active": "Doing"})).run(
            SyncDirection.TARGET_TO_SOURCE
        )

        self.assertEqual(result.items[0].detail, "No changes detected")
        self.assertEqual(source.calls, [])

    def test_skip_reasons(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource(
            [
                _source_item("newer", last_modified_at=T0 + timedelta(hours=2)),
                _source_item("equal", last_modified_at=T0),
                _source_item("undated", last_modified_at=None),
            ]
        )
        target = _FakeTarget(
            [
                _target_item(1, source_id=None, changed_at=T0 + timedelta(minutes=5)),
                _target_item(2, source_id="gone", changed_at=T0 + timedelta(minutes=4)),
                _target_item(3, source_id="newer", changed_at=T0 + timedelta(minutes=3)),
                _target_item(4, source_id="equal", changed_at=T0),
                _target_item(5, source_id="undated", changed_at=T0 - timedelta(minutes=1)),
            ]
        )

        result = _service(source, target).run(SyncDirection.TARGET_TO_SOURCE)

        self.assertEqual(
            [o.detail for o in result.items],
            [
                "No Notion ID found",
                "Notion page not found",
                "Notion is newer or equal",
                "Notion is newer or equal",
                "Cannot compare timestamps",
            ],
        )
        self.assertEqual(result.items[0].source_id, "ado-1")
        self.assertEqual(result.skipped, 5)
        self.assertEqual(source.calls, [])


class ConflictTests(unittest.TestCase):
    def test_pass_one_write_back_does_not_mask_target_changes(self):
        from app.services.sync_types import SyncDirection

        # s1 is created in pass 1; the write-back bumps Notion's timestamp past ADO's.
        source = _FakeSource([_source_item("s1", status="Done")])

        class _RenamingTarget(_FakeTarget):
            def create_item(self, *args, **kwargs):
                item = super().create_item(*args, **kwargs)
                item.title = "Renamed in ADO"
                return item

        target = _RenamingTarget()
        rules = _rules(status_map={"Done": "Closed"}, reverse_status_map={"Closed": "Done"})

        result = _service(source, target, rules).run(SyncDirection.BOTH)

        self.assertEqual(_actions(result), [("s1", "created"), ("s1", "updated_source")])
        self.assertEqual(result.items[1].detail, "title: Item s1 → Renamed in ADO")

    def test_newer_source_is_not_overwritten_in_pass_two(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource(
            [_source_item("s1", status="Done", target_id="5", last_modified_at=T0 + timedelta(hours=1))]
        )
        target = _FakeTarget([_target_item(5, state="Active", source_id="s1", changed_at=T0)])
        rules = _rules(status_map={"Done": "Closed"}, reverse_status_map={"Active": "Doing"})

        result = _service(source, target, rules).run(SyncDirection.BOTH)

        self.assertEqual(_actions(result), [("s1", "updated_target"), ("s1", "skipped")])
        self.assertEqual(source.calls, [])


class DryRunTests(unittest.TestCase):
    def _snapshot(self):
        source = _FakeSource(
            [
                _source_item("s2", status="Doing", target_id="5"),
                _source_item("s3", target_url="https://example.com/manual"),
                _source_item("s4", status="Doing", target_id="6"),
            ]
        )
        target = _FakeTarget(
            [
                _target_item(5, state="New", source_id="s2"),
                _target_item(6, state="Active", source_id="s4", changed_at=T0 + timedelta(hours=1), title="Renamed"),
            ]
        )
        return source, target

    def test_dry_run_matches_live_classification_without_writes(self):
        from app.services.sync_types import SyncDirection

        rules = _rules(
            status_map={"Done": "Closed", "Doing": "Active"},
            reverse_status_map={"Active": "Doing", "New": "Not started", "Closed": "Done"},
        )

        dry_source, dry_target = self._snapshot()
        dry = _service(dry_source, dry_target, rules).run(SyncDirection.BOTH, dry_run=True)
        live_source, live_target = self._snapshot()
        live = _service(live_source, live_target, rules).run(SyncDirection.BOTH)

        self.assertEqual(_actions(dry), _actions(live))
        self.assertEqual(dry.counts(), live.counts())
        self.assertEqual(dry_target.mutating_calls(), [])
        self.assertEqual(dry_source.calls, [])
        self.assertNotEqual(live_target.mutating_calls(), [])
        self.assertTrue(all(o.detail.startswith("Would") for o in dry.items if o.action.value != "skipped"))

    def test_dry_run_create_path_matches_live(self):
        from app.services.sync_types import SyncDirection

        def snapshot():
            return _FakeSource([_source_item("s1", status="Done"), _source_item("s2")]), _FakeTarget()

        rules = _rules(status_map={"Done": "Closed"})
        dry_source, dry_target = snapshot()
        dry = _service(dry_source, dry_target, rules).run(SyncDirection.SOURCE_TO_TARGET, dry_run=True)
        live_source, live_target = snapshot()
        live = _service(live_source, live_target, rules).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertEqual(_actions(dry), _actions(live))
        self.assertEqual(dry.counts(), live.counts())
        self.assertEqual(dry_target.calls, [])
        self.assertEqual(dry.items[0].detail, "Would create in ADO with state: Closed")

    def test_dry_run_reads_subtasks_like_live(self):
        from app.services.sync_types import ChildItem, SyncDirection

        children = {"c1": ChildItem("c1", "Child 1"), "c2": ChildItem("c2", "Child 2")}
        source = _FakeSource([_source_item("s1", child_ids=["c1", "c2", "c3"])], children=children)
        target = _FakeTarget()

        result = _service(source, target).run(SyncDirection.SOURCE_TO_TARGET, dry_run=True)

        self.assertEqual(source.children_fetched, [["c1", "c2", "c3"]])
        self.assertIn("  Subtasks: 2 tasks would be created", result.logs)
        self.assertEqual(target.calls, [])


class RunControlTests(unittest.TestCase):
    def test_events_are_emitted_through_the_sink(self):
        from app.services.sync_types import SyncDirection

        sink = _RecordingSink()
        source = _FakeSource([_source_item("s1"), _source_item("s2")])

        result = _service(source, _FakeTarget(), sink=sink).run(SyncDirection.SOURCE_TO_TARGET)

        progress = [e for e in sink.events if e["type"] == "progress"]
        self.assertEqual(
            [(e["current"], e["total"], e["phase"]) for e in progress],
            [(1, 2, "source_to_target"), (2, 2, "source_to_target")],
        )
        items = [e for e in sink.events if e["type"] == "item"]
        self.assertEqual([e["action"] for e in items], ["created", "created"])
        logs = [e["message"] for e in sink.events if e["type"] == "log"]
        self.assertEqual(logs, result.logs)
        self.assertIn("--- Sync Complete ---", logs)

    def test_fixed_delay_after_every_item(self):
        from app.services.sync_types import SyncDirection

        class _CountingEvent(threading.Event):
            def __init__(self):
                super().__init__()
                self.waits = []

            def wait(self, timeout=None):
                self.waits.append(timeout)
                return False

        event = _CountingEvent()
        source = _FakeSource(
            [_source_item("s1"), _source_item("s2", target_url="https://example.com/manual")]
        )

        _service(source, _FakeTarget(), item_delay_seconds=0.35, cancel_event=event).run(
            SyncDirection.SOURCE_TO_TARGET
        )

        self.assertEqual(event.waits, [0.35, 0.35])

    def test_cancellation_stops_at_next_item(self):
        from app.services.sync_types import SyncDirection

        cancel = threading.Event()

        class _CancellingTarget(_FakeTarget):
            def create_item(self, *args, **kwargs):
                cancel.set()
                return super().create_item(*args, **kwargs)

        source = _FakeSource([_source_item("s1"), _source_item("s2"), _source_item("s3")])

        result = _service(source, _CancellingTarget(), cancel_event=cancel).run(SyncDirection.BOTH)

        self.assertTrue(result.cancelled)
        self.assertEqual(_actions(result), [("s1", "created")])
        self.assertIn("Sync cancelled", result.logs)
        self.assertFalse(any("ADO → Notion" in line for line in result.logs))

    def test_cancel_during_last_item_skips_target_pass(self):
        from app.services.sync_types import SyncDirection

        cancel = threading.Event()

        class _CancellingTarget(_FakeTarget):
            linked_fetches = 0

            def fetch_one(self, item_id):
                cancel.set()
                return super().fetch_one(item_id)

            def fetch_linked_items(self):
                self.linked_fetches += 1
                return []

        source = _FakeSource([_source_item("s1", status="Doing", target_id="5")])
        target = _CancellingTarget([_target_item(5, state="New", source_id="s1")])
        rules = _rules(status_map={"Doing": "Active"})

        result = _service(source, target, rules, cancel_event=cancel).run(SyncDirection.BOTH)

        self.assertTrue(result.cancelled)
        self.assertEqual(target.linked_fetches, 0)
        self.assertEqual(_actions(result), [("s1", "updated_target")])
        self.assertIn("Sync cancelled", result.logs)

    def test_cancel_during_last_pause_is_reported(self):
        from app.services.sync_types import SyncDirection

        class _CancelOnWait(threading.Event):
            def wait(self, timeout=None):
                self.set()
                return True

        source = _FakeSource([_source_item("s1")])

        result = _service(
            source, _FakeTarget(), item_delay_seconds=0.35, cancel_event=_CancelOnWait()
        ).run(SyncDirection.SOURCE_TO_TARGET)

        self.assertTrue(result.cancelled)
        self.assertEqual(result.created, 1)
        self.assertLess(result.logs.index("Sync cancelled"), result.logs.index("--- Sync Complete ---"))

    def test_cancelled_retry_wait_ends_run_without_error(self):
        from app.services.errors import SyncCancelledError
        from app.services.sync_types import SyncDirection

        cancel = threading.Event()

        class _ThrottledTarget(_FakeTarget):
            def create_item(self, *args, **kwargs):
                cancel.set()
                raise SyncCancelledError("Azure DevOps request cancelled while waiting to retry")

        source = _FakeSource([_source_item("s1"), _source_item("s2")])

        result = _service(source, _ThrottledTarget(), cancel_event=cancel).run(SyncDirection.BOTH)

        self.assertTrue(result.cancelled)
        self.assertEqual(result.items, [])
        self.assertEqual(result.errors, [])
        self.assertFalse(any("ADO → Notion" in line for line in result.logs))

    def test_summary_lists_errors(self):
        from app.services.sync_types import SyncDirection

        source = _FakeSource([_source_item("s1")])
        result = _service(source, _FakeTarget(fail_create_for={"s1"})).run(SyncDirection.BOTH)

        self.assertIn("Errors: 1", result.logs)
        self.assertIn('  - "Item s1": ADO exploded', result.logs)


if __name__ == "__main__":
    unittest.main()
