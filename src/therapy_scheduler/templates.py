"""Reusable weekly availability templates."""

import logging
from datetime import date, datetime, timedelta

from .availability import AvailabilityStore
from .config import SchedulingPolicy, SeverityConfig
from .conflicts import message
from .exceptions import InvalidInputError, ResourceNotFoundError
from .models import (
    AvailabilityTemplate,
    AvailabilityWindow,
    BilingualText,
    ConflictType,
    ScheduleConflict,
    TemplateApplication,
    TemplateSlot,
)
from .store import RecordStore
from .utils import day_name, daterange, deterministic_id, format_time, overlaps

logger = logging.getLogger(__name__)


class TemplateManager:
    """Creates templates and instantiates them onto therapist calendars."""

    def __init__(
        self,
        store: RecordStore,
        availability: AvailabilityStore | None = None,
        policy: SchedulingPolicy | None = None,
        severity: SeverityConfig | None = None,
    ):
        self.store = store
        self.availability = availability or AvailabilityStore(store)
        self.policy = policy or SchedulingPolicy()
        self.severity = severity or SeverityConfig()

    def create(self, template: AvailabilityTemplate) -> AvailabilityTemplate:
        """Validate and store a template.

        Raises:
            InvalidInputError: A slot has an unknown weekday, an empty time
                               range or a capacity below one
        """
        errors = []
        for index, slot in enumerate(template.slots):
            if not 0 <= slot.day_of_week <= 6:
                errors.append(f"slot {index}: day_of_week {slot.day_of_week} outside 0-6")
            if slot.start_time >= slot.end_time:
                errors.append(f"slot {index}: start {format_time(slot.start_time)} is not before end")
            if slot.max_sessions_per_slot < 1:
                errors.append(f"slot {index}: capacity must be at least 1")
        if errors:
            raise InvalidInputError("; ".join(errors), field="template", errors=errors)
        return self.store.upsert("template", template)

    def get(self, template_id: str) -> AvailabilityTemplate:
        return self.store.require("template", template_id)

    def capture(
        self,
        therapist_id: str,
        name: BilingualText,
        template_id: str | None = None,
    ) -> AvailabilityTemplate:
        """Snapshot a therapist's recurring windows into a new template."""
        windows = [
            w
            for w in self.store.windows_for(therapist_id)
            if w.specific_date is None and not w.is_time_off and w.is_available
        ]
        if not windows:
            raise ResourceNotFoundError("recurring availability", therapist_id)

        windows.sort(key=lambda w: (w.day_of_week, w.start_time, w.id))
        template = AvailabilityTemplate(
            id=template_id or deterministic_id("template", therapist_id, name.en),
            name=name,
            therapist_id=therapist_id,
            slots=[
                TemplateSlot(
                    day_of_week=w.day_of_week,
                    start_time=w.start_time,
                    end_time=w.end_time,
                    max_sessions_per_slot=w.max_sessions_per_slot,
                )
                for w in windows
            ],
        )
        logger.info(f"Captured {len(template.slots)} slot(s) from therapist {therapist_id} into {template.id}")
        return self.create(template)

    def apply(
        self,
        template_id: str,
        therapist_id: str,
        start_date: date,
        horizon_weeks: int | None = None,
    ) -> TemplateApplication:
        """Expand a template into date-specific windows.

        Every window is created even when it collides with an existing
        exception, time-off window or date-specific window; each collision
        is reported in the returned conflict list instead of aborting.

        Args:
            template_id: Template to instantiate
            therapist_id: Therapist receiving the windows
            start_date: First date of the expansion
            horizon_weeks: Number of weeks to expand (policy default when None)

        Raises:
            ResourceNotFoundError: Template missing or inactive
            InvalidInputError: Non-positive horizon
        """
        template = self.store.get("template", template_id)
        if template is None or not template.is_active:
            raise ResourceNotFoundError("template", template_id)
        weeks = horizon_weeks if horizon_weeks is not None else self.policy.template_horizon_weeks
        if weeks < 1:
            raise InvalidInputError("horizon_weeks must be at least 1", field="template application")

        end_date = start_date + timedelta(days=7 * weeks - 1)
        existing = self.store.windows_for(therapist_id)
        exceptions = self.store.exceptions_for(therapist_id, start_date, end_date)
        result = TemplateApplication(template_id=template.id, therapist_id=therapist_id)

        for day in daterange(start_date, end_date):
            for slot in template.slots:
                if slot.day_of_week != day.weekday():
                    continue
                window = AvailabilityWindow(
                    id=deterministic_id("template-window", template.id, therapist_id, day, format_time(slot.start_time)),
                    therapist_id=therapist_id,
                    start_time=slot.start_time,
                    end_time=slot.end_time,
                    specific_date=day,
                    is_recurring=False,
                    max_sessions_per_slot=slot.max_sessions_per_slot,
                    notes=f"template:{template.id}",
                )
                result.conflicts.extend(self._collisions(window, existing, exceptions))
                result.created_windows.append(self.availability.upsert(window))

        template.usage_count += 1
        template.last_applied = date.today()
        self.store.upsert("template", template)
        logger.info(
            f"Applied template {template.id} to therapist {therapist_id}: "
            f"{result.applied} window(s), {len(result.conflicts)} collision(s)"
        )
        return result

    def _collisions(self, window, existing, exceptions) -> list[ScheduleConflict]:
        """Non-recurring commitments the new window overlaps on its date."""
        day = window.specific_date
        start, end = window.start_minutes, window.end_minutes
        found = []

        for other in existing:
            if other.id == window.id or not other.applies_to(day):
                continue
            if not overlaps(start, end, other.start_minutes, other.end_minutes):
                continue
            if other.is_time_off:
                found.append(("time_off", other.id, f"time off ({other.time_off_reason or other.id})"))
            elif other.specific_date is not None:
                found.append(("template_collision", other.id, f"date-specific window {other.id}"))

        for exception in exceptions:
            if exception.is_available or not exception.applies_on(day):
                continue
            masked_start, masked_end = exception.masked_range()
            if overlaps(start, end, masked_start, masked_end):
                found.append(("time_off", exception.id, f"exception '{exception.reason.en or exception.id}'"))

        conflicts = []
        for rule, other_id, commitment in found:
            logger.debug(f"Window {window.id} collides with {commitment} on {day_name(day.weekday())} {day}")
            conflicts.append(
                ScheduleConflict(
                    id=deterministic_id("template-conflict", window.id, other_id),
                    conflict_type=ConflictType.TIME_CONSTRAINT,
                    severity=self.severity.severity_for(rule),
                    description=message(
                        "template_collision",
                        start=format_time(window.start_time),
                        end=format_time(window.end_time),
                        date=day.isoformat(),
                        commitment=commitment,
                    ),
                    affected_resources=[window.therapist_id, other_id],
                    conflict_date=day,
                    window_id=window.id,
                    rule=rule,
                    detected_at=datetime.now(),
                )
            )
        return conflicts

    def list(self, therapist_id: str | None = None, include_inactive: bool = False) -> list[AvailabilityTemplate]:
        """Templates usable by a therapist: their own plus reusable ones."""
        return self.store.query(
            "template",
            lambda t: (include_inactive or t.is_active)
            and (therapist_id is None or t.therapist_id in (None, therapist_id)),
        )

