import logging
from decimal import Decimal, ROUND_HALF_UP

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from student.services import enrolled_students
from .models import AttendanceSessionModel, AttendanceRecordModel

logger = logging.getLogger(__name__)

Status = AttendanceRecordModel.Status
EntryMode = AttendanceSessionModel.EntryMode

STATUSES = (Status.PRESENT, Status.ABSENT, Status.LATE, Status.EXCUSED)
DAILY_BREAKDOWN_DAYS = 30
TOP_ABSENCES_LIMIT = 10


def next_status(current, entry_mode):
    """
    Status a tap on a student moves to. In checklist mode an unrecorded
    student starts present; in absences-only mode unrecorded means present
    and the cycle comes back to unrecorded after excused.
    """
    if entry_mode == EntryMode.CHECKLIST:
        cycle = {Status.PRESENT: Status.ABSENT, Status.ABSENT: Status.LATE, Status.LATE: Status.EXCUSED}
        return cycle.get(current, Status.PRESENT)
    cycle = {None: Status.ABSENT, Status.ABSENT: Status.LATE, Status.LATE: Status.EXCUSED}
    return cycle.get(current)


def attendance_rate(counts):
    total = sum(counts.get(status, 0) for status in STATUSES)
    if not total:
        return 0
    attended = counts.get(Status.PRESENT, 0) + counts.get(Status.LATE, 0) + counts.get(Status.EXCUSED, 0)
    return int((Decimal(attended) * 100 / total).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def status_counts(records):
    """Counts per status of an AttendanceRecordModel queryset."""
    counts = {status.value: 0 for status in STATUSES}
    for row in records.order_by().values('status').annotate(count=Count('id')):
        counts[row['status']] = row['count']
    counts['total'] = sum(counts[status.value] for status in STATUSES)
    return counts


def create_session(grade, day, entry_mode, recorded_by):
    if AttendanceSessionModel.objects.filter(grade=grade, date=day).exists():
        raise ValidationError(
            "Attendance session already exists for this grade and date.", code='session_exists'
        )
    session = AttendanceSessionModel.objects.create(
        grade=grade, date=day, entry_mode=entry_mode, recorded_by=recorded_by
    )
    logger.info(f"Attendance session opened for {grade.name} on {day} by {recorded_by.username}")
    return session


@transaction.atomic
def save_batch(grade, day, entry_mode, records, recorded_by, is_complete=False):
    """
    Creates or updates the grade's session for the day and upserts one record
    per entry of `records` (dicts with student, status and optional notes).

    Completing an absences-only session records every enrolled student that
    was not listed as present.
    """
    session, created = AttendanceSessionModel.objects.select_for_update().get_or_create(
        grade=grade, date=day,
        defaults={'entry_mode': entry_mode, 'recorded_by': recorded_by},
    )
    session.entry_mode = entry_mode
    session.is_complete = is_complete
    session.completed_at = timezone.now() if is_complete else None
    session.save()

    for entry in records:
        AttendanceRecordModel.objects.update_or_create(
            session=session, student=entry['student'],
            defaults={'status': entry['status'], 'notes': entry.get('notes') or None},
            create_defaults={'status': entry['status'], 'notes': entry.get('notes') or None,
                             'recorded_by': recorded_by},
        )

    filled = 0
    if is_complete and entry_mode == EntryMode.ABSENCES_ONLY:
        recorded = set(session.records.values_list('student_id', flat=True))
        missing = [student for student, _ in enrolled_students(grade) if student.id not in recorded]
        AttendanceRecordModel.objects.bulk_create([
            AttendanceRecordModel(session=session, student=student, status=Status.PRESENT, recorded_by=recorded_by)
            for student in missing
        ])
        filled = len(missing)

    logger.info(
        f"Attendance for {grade.name} on {day} saved by {recorded_by.username}: "
        f"{len(records)} record(s), {filled} marked present on completion"
        f"{' (new session)' if created else ''}"
    )
    return session


@transaction.atomic
def update_student_record(session, student, status, recorded_by, notes=None):
    """Corrects a single student's status in an existing session."""
    record, _ = AttendanceRecordModel.objects.update_or_create(
        session=session, student=student,
        defaults={'status': status, 'notes': notes or None},
        create_defaults={'status': status, 'notes': notes or None, 'recorded_by': recorded_by},
    )
    logger.info(f"{recorded_by.username} set {student.student_number} to {status} for session {session.id}")
    return record


def grade_roll_call(grade, day):
    """
    Enrolled students of the grade with their recorded status for the day
    (None when not recorded yet) and a summary of the statuses.
    """
    session = AttendanceSessionModel.objects.filter(grade=grade, date=day).select_related('recorded_by').first()
    record_map = {}
    if session:
        record_map = {record.student_id: record for record in session.records.all()}

    students = []
    for student, _ in enrolled_students(grade):
        record = record_map.get(student.id)
        students.append({
            'student': student,
            'status': record.status if record else None,
            'notes': record.notes if record else None,
            'record_id': record.id if record else None,
        })
    students.sort(key=lambda row: (row['student'].last_name, row['student'].first_name))

    summary = {'total': len(students)}
    for status in STATUSES:
        summary[status.value] = sum(1 for row in students if row['status'] == status)
    summary['not_recorded'] = sum(1 for row in students if row['status'] is None)
    return {'session': session, 'students': students, 'summary': summary}


def filter_date_range(queryset, start_date=None, end_date=None, field='date'):
    if start_date:
        queryset = queryset.filter(**{f'{field}__gte': start_date})
    if end_date:
        queryset = queryset.filter(**{f'{field}__lte': end_date})
    return queryset


def grade_stats(grade, start_date=None, end_date=None):
    sessions = filter_date_range(AttendanceSessionModel.objects.filter(grade=grade), start_date, end_date)
    records = AttendanceRecordModel.objects.filter(session__in=sessions)

    summary = status_counts(records)
    summary['attendance_rate'] = attendance_rate(summary)

    daily = sessions.order_by('-date').values('date').annotate(
        **{status.value: Count('records', filter=Q(records__status=status)) for status in STATUSES}
    )[:DAILY_BREAKDOWN_DAYS]
    daily_breakdown = []
    for row in daily:
        row = dict(row)
        row['total'] = sum(row[status.value] for status in STATUSES)
        daily_breakdown.append(row)

    top_absences = records.filter(status=Status.ABSENT).values(
        'student_id', 'student__student_number', 'student__first_name', 'student__last_name'
    ).annotate(absence_count=Count('id')).order_by('-absence_count', 'student__last_name')[:TOP_ABSENCES_LIMIT]

    return {
        'summary': summary,
        'sessions_count': sessions.count(),
        'completed_sessions': sessions.filter(is_complete=True).count(),
        'daily_breakdown': daily_breakdown,
        'top_absences': [{
            'student_id': row['student_id'],
            'student_number': row['student__student_number'],
            'first_name': row['student__first_name'],
            'last_name': row['student__last_name'],
            'absence_count': row['absence_count'],
        } for row in top_absences],
    }


def student_records(student, start_date=None, end_date=None):
    records = AttendanceRecordModel.objects.filter(student=student).select_related('session__grade')
    return filter_date_range(records, start_date, end_date, field='session__date').order_by('-session__date')


def student_stats(student, start_date=None, end_date=None):
    summary = status_counts(student_records(student, start_date, end_date))
    summary['attendance_rate'] = attendance_rate(summary)
    return summary


def absence_counts(students, start_date, end_date):
    """{student_id: (absences, lates)} over the given dates, used by trimester results."""
    rows = AttendanceRecordModel.objects.filter(
        student__in=students, session__date__gte=start_date, session__date__lte=end_date,
        status__in=(Status.ABSENT, Status.LATE),
    ).values('student_id').annotate(
        absences=Count('id', filter=Q(status=Status.ABSENT)),
        lates=Count('id', filter=Q(status=Status.LATE)),
    )
    return {row['student_id']: (row['absences'], row['lates']) for row in rows}
