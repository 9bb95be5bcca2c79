"""
Emergency Scheduler

Approval-gated scheduling outside the normal calendar. A request is
validated against the emergency settings, parked for approval when the
policy demands it, and booked directly into the schedule store once enough
approvers agreed. Emergency bookings may use the extended emergency window
and, depending on the level, weekends.
"""

from collections.abc import Callable
from datetime import date, datetime, time, timedelta

from pydantic import Field

from ....core.config import EmergencySettings
from ....core.observability import get_logger, monitor_performance
from ...shared.base import DomainEvent, ValueObject, as_naive_utc, utc_now
from ...shared.exceptions import (
    EmergencyApprovalError,
    EntityNotFoundError,
    SlotNotFoundError,
)
from ..entities.emergency_request import ApprovalDecision, EmergencyRequest
from ..entities.machine import Machine
from ..entities.schedule_entry import ScheduleEntry
from ..events.emergency_events import (
    EMERGENCY_APPROVED,
    EMERGENCY_REJECTED,
    EMERGENCY_REQUESTED,
    EMERGENCY_SCHEDULED,
    NotificationPublisher,
    emergency_event,
)
from ..repositories.emergency_request_repository import EmergencyRequestRepository
from ..repositories.schedule_store import ScheduleStore
from ..value_objects.enums import EmergencyLevel, EmergencyStatus
from ..value_objects.time_window import TimeSlot
from ..value_objects.working_hours import WorkingCalendar
from .availability_calculator import AvailabilityCalculator

logger = get_logger(__name__)

WEEKDAYS = frozenset({1, 2, 3, 4, 5})
# Longer requests always need sign-off
APPROVAL_THRESHOLD_MINUTES = 8 * 60
URGENT_MAX_HOURS = 12


class EmergencyConstraints(ValueObject):
    """Scheduling envelope granted to an emergency level."""

    allow_after_hours: bool
    allow_weekends: bool
    start_time: time
    end_time: time
    max_consecutive_hours: int
    required_approvals: int = Field(ge=1)
    notification_required: bool = True
    # Last day the slot search may use, inclusive
    horizon_end: date | None = None


def requested_days(request: EmergencyRequest) -> list[date]:
    """Calendar days touched by the requested interval; empty without one."""
    if request.requested_start is None:
        return []
    first = request.requested_start.date()
    end = request.requested_start + timedelta(minutes=request.duration_minutes)
    last = (end - timedelta(microseconds=1)).date()
    return [first + timedelta(days=n) for n in range((last - first).days + 1)]


class EmergencyScheduler:
    """
    Service for emergency requests and their approval workflow.

    Notifications are best effort: a failing publisher is logged and never
    changes the outcome of an operation.
    """

    def __init__(
        self,
        store: ScheduleStore,
        repository: EmergencyRequestRepository,
        availability_calculator: AvailabilityCalculator | None = None,
        publisher: NotificationPublisher | None = None,
        settings: EmergencySettings | None = None,
        machines: dict[str, Machine] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._repository = repository
        self._availability = availability_calculator or AvailabilityCalculator(
            store, clock=clock
        )
        self._publisher = publisher
        self._settings = settings or EmergencySettings()
        self._machines = machines if machines is not None else {}
        self._clock = clock

    @property
    def settings(self) -> EmergencySettings:
        return self._settings

    def register_machine(self, machine: Machine) -> None:
        self._machines[machine.id] = machine

    def get_constraints(
        self, level: EmergencyLevel, now: datetime | None = None
    ) -> EmergencyConstraints:
        """Window, weekend policy, hour cap and approval count for ``level``."""
        if level == EmergencyLevel.SAFETY_CRITICAL:
            return EmergencyConstraints(
                allow_after_hours=True,
                allow_weekends=True,
                start_time=time(0, 0),
                end_time=time(23, 59),
                max_consecutive_hours=24,
                required_approvals=2,
            )

        if level == EmergencyLevel.CRITICAL:
            return EmergencyConstraints(
                allow_after_hours=self._settings.allow_emergency_after_hours,
                allow_weekends=self._settings.allow_emergency_weekends,
                start_time=self._settings.emergency_start_time,
                end_time=self._settings.emergency_end_time,
                max_consecutive_hours=self._settings.max_consecutive_emergency_hours,
                required_approvals=1,
            )

        today = as_naive_utc(now or self._clock()).date()
        return EmergencyConstraints(
            allow_after_hours=self._settings.allow_emergency_after_hours,
            allow_weekends=False,
            start_time=self._settings.emergency_start_time,
            end_time=self._settings.emergency_end_time,
            max_consecutive_hours=min(
                self._settings.max_consecutive_emergency_hours, URGENT_MAX_HOURS
            ),
            required_approvals=1,
            horizon_end=today + timedelta(days=7 - today.isoweekday()),
        )

    def requires_approval(self, request: EmergencyRequest) -> bool:
        return (
            self._settings.require_approval_for_emergency
            or request.emergency_level == EmergencyLevel.SAFETY_CRITICAL
            or request.allow_weekends
            or any(day.isoweekday() not in WEEKDAYS for day in requested_days(request))
            or request.duration_minutes > APPROVAL_THRESHOLD_MINUTES
        )

    def validate(self, request: EmergencyRequest) -> list[str]:
        """Policy violations of ``request``; empty when it may be submitted."""
        violations = []
        if request.allow_after_hours and not self._settings.allow_emergency_after_hours:
            violations.append("After-hours emergency operations are not currently enabled")
        if request.allow_weekends and not self._settings.allow_emergency_weekends:
            violations.append("Weekend emergency operations are not currently enabled")
        hours = request.duration_minutes / 60
        max_hours = self._settings.max_consecutive_emergency_hours
        if hours > max_hours:
            violations.append(
                f"Emergency operation duration ({hours:g}h) exceeds maximum "
                f"allowed ({max_hours}h)"
            )
        return violations

    @monitor_performance("emergency_submit")
    async def submit_request(
        self,
        process_instance_id: str,
        machine: Machine,
        duration_minutes: float,
        emergency_level: EmergencyLevel,
        reason: str,
        requested_by: str,
        requested_start: datetime | None = None,
        allow_after_hours: bool = True,
        allow_weekends: bool = False,
        safety_considerations: str | None = None,
    ) -> EmergencyRequest:
        """
        Submit an emergency request.

        Requests needing approval are stored as ``requested``; all others are
        booked immediately and returned as ``scheduled``.

        Raises:
            EmergencyApprovalError: If the request violates the emergency policy
            SlotNotFoundError: If an immediately scheduled request finds no slot
            PersistenceError: If the store or repository fails
        """
        now = as_naive_utc(self._clock())
        self.register_machine(machine)
        request = EmergencyRequest(
            process_instance_id=process_instance_id,
            machine_id=machine.id,
            duration_minutes=duration_minutes,
            emergency_level=emergency_level,
            reason=reason,
            requested_by=requested_by,
            requested_at=now,
            requested_start=requested_start,
            allow_after_hours=allow_after_hours,
            allow_weekends=allow_weekends,
            safety_considerations=safety_considerations,
        )

        violations = self.validate(request)
        if violations:
            raise EmergencyApprovalError(
                "Emergency operation validation failed: " + ", ".join(violations),
                request_id=request.id,
                violations=violations,
            )

        request.requires_approval = self.requires_approval(request)
        request.required_approvals = self.get_constraints(
            emergency_level, now
        ).required_approvals
        logger.info(
            "Emergency request submitted",
            request_id=request.id,
            process_instance_id=process_instance_id,
            machine_id=machine.id,
            emergency_level=emergency_level.value,
            requires_approval=request.requires_approval,
        )

        if request.requires_approval:
            await self._repository.save(request)
            await self._notify(emergency_event(EMERGENCY_REQUESTED, request, now))
            return request

        return await self._schedule(request, now)

    async def approve(self, request_id: str, actor: str) -> EmergencyRequest:
        """
        Record an approval; schedule once the required approvals are reached.

        Approving a request that is already ``approved`` retries the booking
        that failed earlier. Replays by the same actor on a pending request,
        and decisions on rejected or scheduled requests, return the request
        unchanged.

        Raises:
            EntityNotFoundError: If the request does not exist
            EmergencyApprovalError: If ``actor`` may not approve
            SlotNotFoundError: If no emergency slot is available
        """
        request = await self._get(request_id)
        if request.status == EmergencyStatus.APPROVED:
            self._check_approver(request, actor)
            logger.info(
                "Retrying emergency scheduling", request_id=request_id, actor=actor
            )
            return await self._schedule(request, as_naive_utc(self._clock()))
        if request.status != EmergencyStatus.REQUESTED or request.has_decision_from(actor):
            logger.info(
                "Ignoring repeated emergency decision",
                request_id=request_id,
                actor=actor,
                status=request.status.value,
            )
            return request
        self._check_approver(request, actor)

        now = as_naive_utc(self._clock())
        request.decisions.append(
            ApprovalDecision(actor=actor, action="approve", timestamp=now)
        )
        if request.approval_count < request.required_approvals:
            logger.info(
                "Emergency approval recorded",
                request_id=request_id,
                actor=actor,
                approvals=request.approval_count,
                required=request.required_approvals,
            )
            return await self._repository.save(request)

        request.transition_to(EmergencyStatus.APPROVED)
        await self._repository.save(request)
        await self._notify(emergency_event(EMERGENCY_APPROVED, request, now, actor=actor))
        return await self._schedule(request, now)

    async def reject(
        self, request_id: str, actor: str, reason: str | None = None
    ) -> EmergencyRequest:
        """
        Reject a pending request.

        Raises:
            EntityNotFoundError: If the request does not exist
            EmergencyApprovalError: If ``actor`` may not decide
        """
        request = await self._get(request_id)
        if request.status != EmergencyStatus.REQUESTED or request.has_decision_from(actor):
            return request
        self._check_approver(request, actor)

        now = as_naive_utc(self._clock())
        request.decisions.append(
            ApprovalDecision(actor=actor, action="reject", timestamp=now, reason=reason)
        )
        request.transition_to(EmergencyStatus.REJECTED)
        await self._repository.save(request)
        logger.info("Emergency request rejected", request_id=request_id, actor=actor)
        await self._notify(
            emergency_event(EMERGENCY_REJECTED, request, now, actor=actor, reason=reason)
        )
        return request

    async def get_request(self, request_id: str) -> EmergencyRequest:
        return await self._get(request_id)

    async def list_pending(self) -> list[EmergencyRequest]:
        return await self._repository.list_pending()

    async def get_emergency_time_slots(
        self,
        machine: Machine,
        duration_minutes: float,
        level: EmergencyLevel = EmergencyLevel.URGENT,
        now: datetime | None = None,
        allow_after_hours: bool = True,
        allow_weekends: bool = True,
    ) -> list[TimeSlot]:
        """
        Emergency slots of exactly ``duration_minutes`` on ``machine``.

        The window comes from the level's constraints, narrowed by the
        request flags. Breaks do not apply to emergency work. The search
        covers at most the configured emergency horizon.
        """
        now = as_naive_utc(now or self._clock())
        constraints = self.get_constraints(level, now)
        calendar = self._emergency_calendar(
            constraints, allow_after_hours, allow_weekends
        )

        horizon_days = self._settings.search_horizon_days
        if constraints.horizon_end is not None:
            days_left = (constraints.horizon_end - now.date()).days + 1
            horizon_days = min(horizon_days, days_left)
        if horizon_days < 1:
            return []

        slots = await self._availability.get_available_time_slots(
            machine,
            duration_minutes,
            now=now,
            calendar=calendar,
            horizon_days=horizon_days,
            max_slots=self._settings.max_slots,
        )
        exact = []
        for slot in slots:
            if slot.is_fallback:
                continue
            if slot.is_multi_day:
                exact.append(slot)
            else:
                exact.append(
                    TimeSlot.between(
                        slot.start, slot.start + timedelta(minutes=duration_minutes)
                    )
                )
        logger.debug(
            "Emergency slots computed",
            machine_id=machine.id,
            emergency_level=level.value,
            slot_count=len(exact),
        )
        return exact[: self._settings.max_slots]

    def _emergency_calendar(
        self,
        constraints: EmergencyConstraints,
        allow_after_hours: bool,
        allow_weekends: bool,
    ) -> WorkingCalendar:
        """Level window narrowed by the request flags; breaks do not apply."""
        after_hours = constraints.allow_after_hours and allow_after_hours
        config = self._availability.config
        return WorkingCalendar(
            start_time=constraints.start_time if after_hours else config.start_time,
            end_time=constraints.end_time if after_hours else config.end_time,
            working_days=WEEKDAYS,
            allow_weekends=constraints.allow_weekends and allow_weekends,
        )

    def _within_constraints(
        self, request: EmergencyRequest, start: datetime, end: datetime, now: datetime
    ) -> bool:
        """Whether a requested interval fits one day of the level's envelope."""
        constraints = self.get_constraints(request.emergency_level, now)
        if end - start > timedelta(hours=constraints.max_consecutive_hours):
            return False
        if start < now:
            return False
        days = requested_days(request)
        if constraints.horizon_end is not None and days[-1] > constraints.horizon_end:
            return False
        calendar = self._emergency_calendar(
            constraints, request.allow_after_hours, request.allow_weekends
        )
        day_start, day_end = calendar.day_bounds(start.date())
        return calendar.is_working_day(start.date()) and day_start <= start and end <= day_end

    async def _get(self, request_id: str) -> EmergencyRequest:
        request = await self._repository.get_by_id(request_id)
        if request is None:
            raise EntityNotFoundError("EmergencyRequest", request_id)
        return request

    def _check_approver(self, request: EmergencyRequest, actor: str) -> None:
        approvers = self._settings.emergency_approvers
        if approvers and actor not in approvers:
            raise EmergencyApprovalError(
                f"{actor} is not an authorised emergency approver",
                request_id=request.id,
            )

    async def _schedule(
        self, request: EmergencyRequest, now: datetime
    ) -> EmergencyRequest:
        machine = self._machines.get(request.machine_id)
        if machine is None:
            raise EntityNotFoundError("Machine", request.machine_id)

        interval = await self._requested_interval(request, machine, now)
        if interval is None:
            slots = await self.get_emergency_time_slots(
                machine,
                request.duration_minutes,
                request.emergency_level,
                now,
                allow_after_hours=request.allow_after_hours,
                allow_weekends=request.allow_weekends,
            )
            interval = await self._first_free(request, machine, slots)
        if interval is None:
            # Persist the state reached so far before reporting the failure
            await self._repository.save(request)
            raise SlotNotFoundError(
                request.process_instance_id,
                [machine.id],
                self._settings.search_horizon_days,
            )

        start, end = interval
        entry = ScheduleEntry(
            machine_id=machine.id,
            process_instance_id=request.process_instance_id,
            start_time=start,
            end_time=end,
            display_name=f"EMERGENCY: {request.reason}",
            is_emergency=True,
        )
        entry.id = await self._store.create(entry)

        request.schedule_entry_id = entry.id
        request.transition_to(EmergencyStatus.SCHEDULED)
        await self._repository.save(request)
        logger.info(
            "Emergency operation scheduled",
            request_id=request.id,
            schedule_entry_id=entry.id,
            machine_id=machine.id,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        await self._notify(
            emergency_event(
                EMERGENCY_SCHEDULED,
                request,
                now,
                schedule_entry_id=entry.id,
                start=start.isoformat(),
                end=end.isoformat(),
            )
        )
        return request

    async def _requested_interval(
        self, request: EmergencyRequest, machine: Machine, now: datetime
    ) -> tuple[datetime, datetime] | None:
        if request.requested_start is None:
            return None
        start = request.requested_start
        end = start + timedelta(minutes=request.duration_minutes)
        if not self._within_constraints(request, start, end, now):
            logger.info(
                "Requested emergency start is outside the level constraints, "
                "searching slots",
                request_id=request.id,
                emergency_level=request.emergency_level.value,
                requested_start=start.isoformat(),
            )
            return None
        if await self._is_free(request, machine, start, end):
            return start, end
        logger.info(
            "Requested emergency start is not free, searching slots",
            request_id=request.id,
            requested_start=start.isoformat(),
        )
        return None

    async def _first_free(
        self, request: EmergencyRequest, machine: Machine, slots: list[TimeSlot]
    ) -> tuple[datetime, datetime] | None:
        for slot in slots:
            if await self._is_free(request, machine, slot.start, slot.end):
                return slot.start, slot.end
        return None

    async def _is_free(
        self, request: EmergencyRequest, machine: Machine, start: datetime, end: datetime
    ) -> bool:
        if machine.maintenance_overlapping(start, end):
            return False
        candidate = ScheduleEntry(
            machine_id=machine.id,
            process_instance_id=request.process_instance_id,
            start_time=start,
            end_time=end,
            is_emergency=True,
        )
        return not await self._store.detect_conflicts(candidate)

    async def _notify(self, event: DomainEvent) -> None:
        if self._publisher is None:
            return
        try:
            await self._publisher.publish(event)
        except Exception as e:
            logger.warning(
                "Emergency notification failed",
                event_type=event.event_type,
                aggregate_id=event.aggregate_id,
                error=str(e),
            )
