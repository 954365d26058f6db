"""
Weekly timetables: the periods of the school day and the schedule slots
placing a subject, a teacher and a classroom in them.
"""
import logging

from django.core.exceptions import ValidationError
from django.db import transaction

from .models import TimePeriodModel, ScheduleSlotModel

logger = logging.getLogger(__name__)


def overlapping_period(school_year, start_time, end_time, exclude_pk=None):
    periods = TimePeriodModel.objects.filter(school_year=school_year)
    if exclude_pk:
        periods = periods.exclude(pk=exclude_pk)
    for period in periods:
        if period.overlaps(start_time, end_time):
            return period
    return None


def find_slot_conflicts(room, time_period, day_of_week, teacher=None, room_location=None, is_break=False,
                        exclude_pk=None):
    """
    Returns a list of {'type', 'details'} dicts, empty when the slot fits.

    A room never has two slots in the same cell. Breaks are otherwise free;
    a lesson also needs its teacher and its classroom to be free.
    """
    same_cell = ScheduleSlotModel.objects.filter(time_period=time_period, day_of_week=day_of_week)
    if exclude_pk:
        same_cell = same_cell.exclude(pk=exclude_pk)

    conflicts = []
    if not is_break:
        lessons = same_cell.filter(is_break=False).select_related('room')
        if teacher is not None:
            taken = lessons.filter(teacher=teacher).first()
            if taken:
                conflicts.append({'type': 'teacher',
                                  'details': f"Teacher already assigned to {taken.room.display_name} at this time"})
        if room_location:
            taken = lessons.filter(room_location__iexact=room_location).first()
            if taken:
                conflicts.append({'type': 'room',
                                  'details': f"Room {room_location} is occupied by {taken.room.display_name} "
                                             f"at this time"})

    if same_cell.filter(room=room).exists():
        conflicts.append({'type': 'section', 'details': "This class already has a slot at this time"})
    return conflicts


def save_schedule_slot(form):
    """Saves a valid ScheduleSlotForm after checking the slot against the rest of the timetable."""
    slot = form.save(commit=False)
    with transaction.atomic():
        # serialises concurrent edits of the same cell
        list(ScheduleSlotModel.objects.select_for_update().filter(
            time_period=slot.time_period, day_of_week=slot.day_of_week
        ))
        conflicts = find_slot_conflicts(
            slot.room, slot.time_period, slot.day_of_week, teacher=slot.teacher,
            room_location=slot.room_location, is_break=slot.is_break, exclude_pk=slot.pk,
        )
        if conflicts:
            raise ValidationError("Schedule conflict detected.", code='schedule_conflict',
                                  params={'conflicts': conflicts})
        slot.save()
    logger.info(f"Schedule slot saved: {slot}")
    return slot


def weekly_schedule(room):
    """The room's week as a list of days, each listing every active period with its slot or None."""
    periods = list(TimePeriodModel.objects.filter(school_year=room.grade.school_year, is_active=True))
    slots = {
        (slot.day_of_week, slot.time_period_id): slot
        for slot in room.schedule_slots.select_related('grade_subject__subject', 'teacher')
    }
    return periods, [
        {
            'day': day,
            'periods': [(period, slots.get((day.value, period.pk))) for period in periods],
        }
        for day in ScheduleSlotModel.Day
    ]
