import logging

from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_date

from admin_site.models import GradeModel
from admin_site.views import ApiView
from student.models import StudentModel
from student.services import enrolled_students
from .forms import AttendanceSessionForm, AttendanceBatchForm, AttendanceRecordForm, DateRangeForm
from .models import AttendanceSessionModel
from . import services

logger = logging.getLogger(__name__)


def serialize_session(session):
    if session is None:
        return None
    return {
        'id': session.id,
        'grade_id': session.grade_id,
        'date': session.date,
        'entry_mode': session.entry_mode,
        'is_complete': session.is_complete,
        'completed_at': session.completed_at,
        'recorded_by': session.recorded_by.username if session.recorded_by else None,
    }


def _student(student):
    return {
        'id': student.id,
        'student_number': student.student_number,
        'first_name': student.first_name,
        'last_name': student.last_name,
    }


def _day(value):
    try:
        day = parse_date(value or '')
    except ValueError:
        day = None
    if day is None:
        raise ValidationError("Dates must be formatted YYYY-MM-DD.", code='invalid_date')
    return day


class GradeAttendanceView(ApiView):
    """Roll call of a grade for one day: read it, or save it in one batch."""
    method_permissions = {
        'GET': 'attendance.view_attendancesessionmodel',
        'POST': 'attendance.add_attendancerecordmodel',
    }

    def get(self, request, *args, **kwargs):
        grade = get_object_or_404(GradeModel, pk=self.kwargs['grade_id'])
        day = _day(self.kwargs['date'])
        roll_call = services.grade_roll_call(grade, day)
        return JsonResponse({
            'grade': {'id': grade.id, 'name': grade.name, 'level': grade.level},
            'date': day,
            'session': serialize_session(roll_call['session']),
            'students': [{
                **_student(row['student']),
                'status': row['status'],
                'notes': row['notes'],
                'record_id': row['record_id'],
            } for row in roll_call['students']],
            'summary': roll_call['summary'],
        })

    def post(self, request, *args, **kwargs):
        grade = get_object_or_404(GradeModel, pk=self.kwargs['grade_id'])
        day = _day(self.kwargs['date'])
        form = AttendanceBatchForm(self.get_json(), enrolled=[student for student, _ in enrolled_students(grade)])
        if not form.is_valid():
            return self.form_invalid(form)
        session = services.save_batch(
            grade, day, form.cleaned_data['entry_mode'], form.cleaned_data['records'], request.user,
            is_complete=form.cleaned_data['is_complete'],
        )
        return JsonResponse({
            'success': True,
            'session': serialize_session(session),
            'summary': services.status_counts(session.records.all()),
        })


class AttendanceSessionListView(ApiView):
    method_permissions = {
        'GET': 'attendance.view_attendancesessionmodel',
        'POST': 'attendance.add_attendancesessionmodel',
    }

    def get(self, request, *args, **kwargs):
        queryset = AttendanceSessionModel.objects.select_related('grade', 'recorded_by')
        grade_id = request.GET.get('grade')
        if grade_id:
            queryset = queryset.filter(grade_id=grade_id)
        is_complete = request.GET.get('is_complete')
        if is_complete in ('true', 'false'):
            queryset = queryset.filter(is_complete=is_complete == 'true')

        dates = DateRangeForm(request.GET)
        if not dates.is_valid():
            return self.form_invalid(dates)
        queryset = services.filter_date_range(
            queryset, dates.cleaned_data['start_date'], dates.cleaned_data['end_date']
        )

        sessions, meta = self.paginate(queryset.order_by('-date', 'grade__order'))
        return JsonResponse({
            'sessions': [{
                **serialize_session(session),
                'grade': session.grade.name,
                'summary': services.status_counts(session.records.all()),
            } for session in sessions],
            'pagination': meta,
        })

    def post(self, request, *args, **kwargs):
        form = AttendanceSessionForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        session = services.create_session(
            form.cleaned_data['grade'], form.cleaned_data['date'], form.cleaned_data['entry_mode'], request.user
        )
        return JsonResponse({'success': True, 'session': serialize_session(session)}, status=201)


class GradeAttendanceStatsView(ApiView):
    permission_required = 'attendance.view_attendancesessionmodel'

    def get(self, request, *args, **kwargs):
        grade = get_object_or_404(GradeModel.objects.select_related('school_year'), pk=self.kwargs['grade_id'])
        dates = DateRangeForm(request.GET)
        if not dates.is_valid():
            return self.form_invalid(dates)
        stats = services.grade_stats(grade, dates.cleaned_data['start_date'], dates.cleaned_data['end_date'])
        return JsonResponse({
            'grade': {'id': grade.id, 'name': grade.name, 'level': grade.level,
                      'school_year': grade.school_year.name},
            **stats,
        })


class StudentAttendanceView(ApiView):
    """Attendance history of a student, looked up by id or student number."""
    method_permissions = {
        'GET': 'attendance.view_attendancerecordmodel',
        'PATCH': 'attendance.change_attendancerecordmodel',
    }

    def get_student(self):
        key = str(self.kwargs['student'])
        lookup = {'pk': key} if key.isdigit() else {'student_number': key}
        return get_object_or_404(StudentModel, **lookup)

    def get(self, request, *args, **kwargs):
        student = self.get_student()
        dates = DateRangeForm(request.GET)
        if not dates.is_valid():
            return self.form_invalid(dates)
        start_date, end_date = dates.cleaned_data['start_date'], dates.cleaned_data['end_date']

        records, meta = self.paginate(services.student_records(student, start_date, end_date), default_limit=100)
        return JsonResponse({
            'student': _student(student),
            'records': [{
                'id': record.id,
                'date': record.session.date,
                'grade': record.session.grade.name,
                'session_id': record.session_id,
                'status': record.status,
                'notes': record.notes,
            } for record in records],
            'summary': services.student_stats(student, start_date, end_date),
            'pagination': meta,
        })

    def patch(self, request, *args, **kwargs):
        student = self.get_student()
        form = AttendanceRecordForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        record = services.update_student_record(
            form.cleaned_data['session'], student, form.cleaned_data['status'], request.user,
            notes=form.cleaned_data['notes'],
        )
        return JsonResponse({
            'success': True,
            'record': {'id': record.id, 'session_id': record.session_id, 'status': record.status,
                       'notes': record.notes},
        })
