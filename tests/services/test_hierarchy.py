"""Folder naming, list classification and tag propagation tests."""

from datetime import UTC, date, datetime

import pytest

from taskbridge.models import EventPhase
from taskbridge.services.hierarchy import (
    build_folder_name,
    build_task_record,
    classify_lists,
    parse_due_date,
    parse_folder_name,
    parse_timestamp,
    resolve_agent_id,
    resolve_completed_at,
    responsible_person,
    select_included_tasks,
)
from taskbridge.services.payloads import RemoteAssignee, RemoteList
from tests.factories import make_task

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


class TestFolderNames:
    def test_build_uses_first_name_and_short_date(self):
        name = build_folder_name("Dana Whitfield", "Spring Open House", date(2025, 3, 14))
        assert name == "Dana [03.14.25] Spring Open House"

    @pytest.mark.parametrize("agent_name", [None, "", "   "])
    def test_build_without_agent_uses_placeholder(self, agent_name):
        assert build_folder_name(agent_name, "Launch", date(2025, 1, 2)) == "Agent [01.02.25] Launch"

    def test_parse(self):
        assert parse_folder_name("Dana [03.14.25] Spring Open House") == ("dana", "spring open house")

    def test_parse_tolerates_dash_and_whitespace(self):
        assert parse_folder_name("  Dana [03.14.25] - Spring Open House ") == ("dana", "spring open house")

    @pytest.mark.parametrize("name", ["Spring Open House", "[03.14.25] Launch", "Dana 03.14.25 Launch", ""])
    def test_parse_rejects_other_names(self, name):
        assert parse_folder_name(name) is None


class TestClassifyLists:
    """Tests for assigning folder lists to phases."""

    def test_by_name(self):
        lists = [
            RemoteList("3", "Post-Event Follow Up"),
            RemoteList("1", "Pre-Event Prep"),
            RemoteList("2", "Event Day"),
        ]
        result = classify_lists(lists)

        assert result.complete
        assert (result.pre.id, result.day.id, result.post.id) == ("1", "2", "3")

    def test_name_match_is_case_insensitive(self):
        result = classify_lists([RemoteList("a", "PRE"), RemoteList("b", "Day Of"), RemoteList("c", "POST")])
        assert result.list_ids() == {
            EventPhase.PRE_EVENT: "a",
            EventPhase.EVENT_DAY: "b",
            EventPhase.POST_EVENT: "c",
        }

    def test_positional_fallback_for_exactly_three(self):
        lists = [RemoteList("x", "Planning"), RemoteList("y", "Marketing"), RemoteList("z", "Wrap")]
        result = classify_lists(lists)

        # None of the names say pre/post, so the folder order decides
        assert (result.pre.id, result.day.id, result.post.id) == ("x", "y", "z")

    def test_no_fallback_for_other_counts(self):
        result = classify_lists([RemoteList("x", "Planning"), RemoteList("y", "Wrap")])

        assert not result.complete
        assert result.pre is None
        assert result.post is None
        # Last unmatched name wins the day slot
        assert result.day.id == "y"

    def test_empty_folder(self):
        result = classify_lists([])
        assert result.list_ids() == {
            EventPhase.PRE_EVENT: None,
            EventPhase.EVENT_DAY: None,
            EventPhase.POST_EVENT: None,
        }


class TestSelectIncludedTasks:
    """Tag propagation from parent tasks to subtasks."""

    def test_tagged_parent_brings_untagged_subtask(self):
        tasks = [
            make_task("A", tags=("event",)),
            make_task("A1", parent="A"),
            make_task("B"),
        ]
        assert [t.id for t in select_included_tasks(tasks, "event")] == ["A", "A1"]

    def test_order_independent(self):
        tasks = [
            make_task("A1", parent="A"),
            make_task("B"),
            make_task("A", tags=("event",)),
        ]
        assert {t.id for t in select_included_tasks(tasks, "event")} == {"A", "A1"}

    def test_propagation_is_one_level(self):
        tasks = [
            make_task("A", tags=("event",)),
            make_task("A1", parent="A"),
            make_task("A1a", parent="A1"),
        ]
        assert [t.id for t in select_included_tasks(tasks, "event")] == ["A", "A1"]

    def test_tag_match_is_case_insensitive(self):
        assert [t.id for t in select_included_tasks([make_task("A", tags=("Event",))], "event")] == ["A"]

    def test_tagged_subtask_of_untagged_parent(self):
        tasks = [make_task("B"), make_task("B1", parent="B", tags=("event",))]
        assert [t.id for t in select_included_tasks(tasks, "event")] == ["B1"]


class TestTimestamps:
    def test_epoch_millis_string(self):
        assert parse_timestamp("1741608000000") == datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

    def test_epoch_millis_int(self):
        assert parse_timestamp(1741608000000) == datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

    def test_iso(self):
        assert parse_timestamp("2025-03-10T12:00:00Z") == datetime(2025, 3, 10, 12, 0, tzinfo=UTC)

    @pytest.mark.parametrize("raw", [None, "", "soon", "2025-13-45"])
    def test_unparseable(self, raw):
        assert parse_timestamp(raw) is None

    def test_due_date_is_date_only(self):
        assert parse_due_date("1741608000000") == date(2025, 3, 10)
        assert parse_due_date("not a date") is None


class TestCompletedAt:
    def test_not_done_ignores_date_done(self):
        assert resolve_completed_at("in progress", "1741608000000", NOW) is None

    def test_done_uses_date_done(self):
        done = resolve_completed_at("complete", "1741521600000", NOW)
        assert done == datetime(2025, 3, 9, 12, 0, tzinfo=UTC)

    @pytest.mark.parametrize("status", ["done", "Closed", "COMPLETE", " completed "])
    def test_done_without_date_uses_now(self, status):
        assert resolve_completed_at(status, None, NOW) == NOW

    def test_no_status(self):
        assert resolve_completed_at(None, "1741521600000", NOW) is None


class TestAssignees:
    def test_responsible_person_joins_names(self):
        assignees = [
            RemoteAssignee(id="1", username="dana"),
            RemoteAssignee(id="2", email="morgan@example.com"),
        ]
        assert responsible_person(assignees) == "dana, morgan@example.com"

    def test_responsible_person_empty(self):
        assert responsible_person([]) is None

    def test_agent_from_email(self):
        assignees = [
            RemoteAssignee(id="1", email="nobody@example.com"),
            RemoteAssignee(id="2", email="Dana@Example.com"),
        ]
        assert resolve_agent_id(assignees, {"dana@example.com": "agent-7"}, "agent-1") == "agent-7"

    def test_agent_falls_back_to_default(self):
        assignees = [RemoteAssignee(id="1", email="nobody@example.com")]
        assert resolve_agent_id(assignees, {"dana@example.com": "agent-7"}, "agent-1") == "agent-1"
        assert resolve_agent_id(assignees, None, None) is None


class TestBuildTaskRecord:
    def test_record_fields(self):
        task = make_task(
            "T1",
            "Order signage",
            status="complete",
            due_date="1741608000000",
            date_done="1741521600000",
            assignees=(RemoteAssignee(id="9", username="dana"),),
        )
        record = build_task_record(task, "event-1", phase=EventPhase.PRE_EVENT, now=NOW, agent_id="agent-1")

        assert record == {
            "clickup_task_id": "T1",
            "event_id": "event-1",
            "task_name": "Order signage",
            "status": "complete",
            "due_date": date(2025, 3, 10),
            "completed_at": datetime(2025, 3, 9, 12, 0, tzinfo=UTC),
            "responsible_person": "dana",
            "phase": "pre_event",
            "agent_id": "agent-1",
            "updated_at": NOW,
        }

    def test_legacy_list_has_no_phase(self):
        record = build_task_record(make_task("T2"), "event-1", phase=None, now=NOW)
        assert record["phase"] is None
        assert record["completed_at"] is None
