"""Tests for availability templates."""

from datetime import date, time, timedelta

import pytest

from therapy_scheduler.exceptions import InvalidInputError, ResourceNotFoundError
from therapy_scheduler.models import (
    AvailabilityException,
    AvailabilityTemplate,
    BilingualText,
    ConflictSeverity,
    TemplateSlot,
)
from therapy_scheduler.templates import TemplateManager


@pytest.fixture
def manager(store):
    return TemplateManager(store)


@pytest.fixture
def mornings(manager):
    """Monday and Tuesday 08:00-12:00."""
    return manager.create(
        AvailabilityTemplate(
            id="tpl-mornings",
            name=BilingualText("Mornings", "الفترة الصباحية"),
            slots=[
                TemplateSlot(0, time(8, 0), time(12, 0)),
                TemplateSlot(1, time(8, 0), time(12, 0)),
            ],
        )
    )


class TestCreate:
    """Tests for template creation."""

    def test_create_stores_template(self, manager, mornings):
        assert manager.get("tpl-mornings").slots == mornings.slots

    def test_rejects_bad_slots(self, manager):
        template = AvailabilityTemplate(
            id="bad",
            name=BilingualText("Bad"),
            slots=[TemplateSlot(7, time(8, 0), time(12, 0)), TemplateSlot(0, time(12, 0), time(8, 0))],
        )
        with pytest.raises(InvalidInputError) as exc_info:
            manager.create(template)
        assert len(exc_info.value.errors) == 2

    def test_capture_recurring_windows(self, manager):
        template = manager.capture("T1", BilingualText("Standard week"))
        assert [s.day_of_week for s in template.slots] == [0, 2, 4]
        assert template.therapist_id == "T1"

    def test_capture_without_windows(self, manager):
        with pytest.raises(ResourceNotFoundError):
            manager.capture("T9", BilingualText("Nothing"))

    def test_list_filters_by_therapist(self, manager, mornings):
        manager.capture("T1", BilingualText("Standard week"), template_id="tpl-t1")
        assert [t.id for t in manager.list("T1")] == ["tpl-mornings", "tpl-t1"]
        assert [t.id for t in manager.list("T2")] == ["tpl-mornings"]


class TestApply:
    """Tests for template application."""

    def test_collision_with_time_off_exception(self, manager, mornings, store, monday):
        store.upsert(
            "exception",
            AvailabilityException(
                "X1", "T1", monday, monday, start_time=time(9, 0), end_time=time(10, 0),
                reason=BilingualText("Staff meeting"),
            ),
        )
        result = manager.apply("tpl-mornings", "T1", monday, horizon_weeks=1)

        assert result.applied == 2
        assert [w.specific_date for w in result.created_windows] == [monday, monday + timedelta(days=1)]
        assert len(result.conflicts) == 1
        assert result.conflicts[0].conflict_date == monday
        assert result.conflicts[0].rule == "time_off"
        assert result.conflicts[0].severity == ConflictSeverity.HIGH

    def test_collision_with_date_specific_window(self, manager, mornings, store, make_window, monday):
        tuesday = monday + timedelta(days=1)
        store.upsert("window", make_window("special", start="11:00", end="13:00", specific_date=tuesday))
        result = manager.apply("tpl-mornings", "T1", monday, horizon_weeks=1)
        assert [c.rule for c in result.conflicts] == ["template_collision"]
        assert result.conflicts[0].severity == ConflictSeverity.MEDIUM
        assert result.conflicts[0].conflict_date == tuesday

    def test_recurring_overlap_is_not_a_collision(self, manager, mornings, monday):
        result = manager.apply("tpl-mornings", "T1", monday, horizon_weeks=2)
        assert result.applied == 4
        assert result.conflicts == []

    def test_default_horizon(self, manager, mornings, monday):
        result = manager.apply("tpl-mornings", "T2", monday)
        assert result.applied == 24

    def test_windows_are_stored_and_dated(self, manager, mornings, store, monday):
        result = manager.apply("tpl-mornings", "T2", monday, horizon_weeks=1)
        stored = store.windows_for("T2")
        assert {w.id for w in stored} == {w.id for w in result.created_windows}
        assert all(not w.is_recurring for w in stored)

    def test_reapply_reuses_window_ids(self, manager, mornings, store, monday):
        manager.apply("tpl-mornings", "T2", monday, horizon_weeks=1)
        manager.apply("tpl-mornings", "T2", monday, horizon_weeks=1)
        assert len(store.windows_for("T2")) == 2

    def test_usage_tracked(self, manager, mornings, monday):
        manager.apply("tpl-mornings", "T2", monday, horizon_weeks=1)
        template = manager.get("tpl-mornings")
        assert template.usage_count == 1
        assert template.last_applied == date.today()

    def test_inactive_template(self, manager, mornings, store, monday):
        mornings.is_active = False
        store.upsert("template", mornings)
        with pytest.raises(ResourceNotFoundError):
            manager.apply("tpl-mornings", "T1", monday)

    def test_missing_template(self, manager, monday):
        with pytest.raises(ResourceNotFoundError):
            manager.apply("nope", "T1", monday)

    def test_non_positive_horizon(self, manager, mornings, monday):
        with pytest.raises(InvalidInputError):
            manager.apply("tpl-mornings", "T1", monday, horizon_weeks=0)
