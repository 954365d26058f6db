import json
import logging

from django.contrib.auth.mixins import LoginRequiredMixin, PermissionRequiredMixin
from django.core.exceptions import ValidationError, PermissionDenied
from django.db.models import Count, Q
from django.http import JsonResponse, Http404
from django.shortcuts import get_object_or_404
from django.forms.models import model_to_dict
from django.views.generic import View

from .models import (
    ActivityLogModel, SchoolYearModel, TrimesterModel, GradeModel, GradeRoomModel, TimePeriodModel, ScheduleSlotModel,
    get_active_school_year
)
from .forms import SchoolYearForm, TrimesterForm, TimePeriodForm, ScheduleSlotForm
from . import timetable

logger = logging.getLogger(__name__)


def as_number(value):
    """Money and averages are Decimals in the database and plain numbers on the wire."""
    return float(value) if value is not None else None


def validation_error_response(error, status=400):
    payload = {'success': False, 'message': ' '.join(error.messages)}
    params = getattr(error, 'params', None)
    if params:
        payload.update({key: as_number(val) if hasattr(val, 'quantize') else val for key, val in params.items()})
    return JsonResponse(payload, status=status)


class JsonFormErrorsMixin:
    """
    Returns form errors as a 400 JSON response, the API counterpart of
    flashing them to the messages framework.
    """
    def form_invalid(self, form):
        return JsonResponse({
            'success': False,
            'message': 'Validation error',
            'errors': form.errors.get_json_data(),
        }, status=400)


class ApiView(LoginRequiredMixin, PermissionRequiredMixin, JsonFormErrorsMixin, View):
    """
    Base class for the JSON endpoints.

    Business rule violations raised by the services as ValidationError become
    400 responses, missing objects 404, anything else is logged and becomes a
    500. `method_permissions` maps HTTP methods to the permission they need.
    """
    raise_exception = True
    method_permissions = None

    def get_permission_required(self):
        if self.method_permissions:
            perm = self.method_permissions.get(self.request.method)
            if perm is None:
                return ()
            return (perm,) if isinstance(perm, str) else perm
        return super().get_permission_required()

    def dispatch(self, request, *args, **kwargs):
        try:
            return super().dispatch(request, *args, **kwargs)
        except PermissionDenied:
            raise
        except Http404 as e:
            return JsonResponse({'success': False, 'message': str(e) or 'Not found'}, status=404)
        except ValidationError as e:
            logger.warning(f"{self.__class__.__name__} refused: {'; '.join(e.messages)}")
            return validation_error_response(e)
        except Exception as e:
            logger.error(f"Unexpected error in {self.__class__.__name__}: {e}", exc_info=True)
            return JsonResponse({'success': False, 'message': 'An unexpected error occurred.'}, status=500)

    def get_json(self):
        if not self.request.body:
            return {}
        try:
            data = json.loads(self.request.body)
        except (ValueError, UnicodeDecodeError):
            raise ValidationError("Request body is not valid JSON.", code='invalid_json')
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object.", code='invalid_json')
        return data

    def paginate(self, queryset, default_limit=50, max_limit=200):
        """Applies limit/offset from the query string and returns (page, meta)."""
        try:
            limit = min(max(int(self.request.GET.get('limit', default_limit)), 1), max_limit)
        except ValueError:
            limit = default_limit
        try:
            offset = max(int(self.request.GET.get('offset', 0)), 0)
        except ValueError:
            offset = 0
        total = queryset.count()
        page = list(queryset[offset:offset + limit])
        return page, {
            'total': total,
            'limit': limit,
            'offset': offset,
            'has_more': offset + limit < total,
        }


def _serialize_school_year(school_year):
    return {
        'id': school_year.id,
        'name': school_year.name,
        'start_date': school_year.start_date,
        'end_date': school_year.end_date,
        'enrollment_start': school_year.enrollment_start,
        'enrollment_end': school_year.enrollment_end,
        'is_active': school_year.is_active,
    }


def _serialize_trimester(trimester):
    return {
        'id': trimester.id,
        'school_year_id': trimester.school_year_id,
        'number': trimester.number,
        'name': trimester.name,
        'start_date': trimester.start_date,
        'end_date': trimester.end_date,
        'is_active': trimester.is_active,
    }


class SchoolYearListView(ApiView):
    method_permissions = {
        'GET': 'admin_site.view_schoolyearmodel',
        'POST': 'admin_site.add_schoolyearmodel',
    }

    def get(self, request, *args, **kwargs):
        school_years = SchoolYearModel.objects.all()
        return JsonResponse({'school_years': [_serialize_school_year(sy) for sy in school_years]})

    def post(self, request, *args, **kwargs):
        form = SchoolYearForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        school_year = form.save()
        if form.cleaned_data.get('is_active'):
            school_year.activate()
        ActivityLogModel.objects.create(
            category='school_year', sub_category='create', school_year=school_year,
            log=f"{request.user.username} created school year {school_year.name}"
        )
        return JsonResponse({'success': True, 'school_year': _serialize_school_year(school_year)}, status=201)


class SchoolYearActivateView(ApiView):
    permission_required = 'admin_site.change_schoolyearmodel'

    def post(self, request, *args, **kwargs):
        school_year = get_object_or_404(SchoolYearModel, pk=self.kwargs['pk'])
        school_year.activate()
        ActivityLogModel.objects.create(
            category='school_year', sub_category='activate', school_year=school_year,
            log=f"{request.user.username} activated school year {school_year.name}"
        )
        return JsonResponse({'success': True, 'school_year': _serialize_school_year(school_year)})


class TrimesterListView(ApiView):
    method_permissions = {
        'GET': 'admin_site.view_trimestermodel',
        'POST': 'admin_site.add_trimestermodel',
    }

    def get(self, request, *args, **kwargs):
        school_year_id = request.GET.get('school_year')
        if school_year_id:
            school_year = get_object_or_404(SchoolYearModel, pk=school_year_id)
        else:
            school_year = get_active_school_year()
        trimesters = TrimesterModel.objects.filter(school_year=school_year) if school_year else []
        return JsonResponse({'trimesters': [_serialize_trimester(t) for t in trimesters]})

    def post(self, request, *args, **kwargs):
        form = TrimesterForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        trimester = form.save()
        if form.cleaned_data.get('is_active'):
            trimester.activate()
        return JsonResponse({'success': True, 'trimester': _serialize_trimester(trimester)}, status=201)


class TrimesterActivateView(ApiView):
    permission_required = 'admin_site.change_trimestermodel'

    def post(self, request, *args, **kwargs):
        trimester = get_object_or_404(TrimesterModel, pk=self.kwargs['pk'])
        trimester.activate()
        ActivityLogModel.objects.create(
            category='trimester', sub_category='activate', school_year=trimester.school_year,
            log=f"{request.user.username} activated {trimester.name}"
        )
        return JsonResponse({'success': True, 'trimester': _serialize_trimester(trimester)})


class GradeListView(ApiView):
    """Grades of a school year with their enrollment count and room occupancy."""
    permission_required = 'admin_site.view_grademodel'

    def get(self, request, *args, **kwargs):
        school_year_id = request.GET.get('school_year')
        school_year = (get_object_or_404(SchoolYearModel, pk=school_year_id)
                       if school_year_id else get_active_school_year())
        if not school_year:
            return JsonResponse({'grades': []})

        grades = GradeModel.objects.filter(school_year=school_year).annotate(
            enrolled=Count('enrollments', filter=Q(enrollments__status='completed'))
        ).prefetch_related('rooms')

        data = []
        for grade in grades:
            rooms = []
            for room in grade.rooms.all():
                if not room.is_active:
                    continue
                rooms.append({
                    'id': room.id,
                    'name': room.name,
                    'display_name': room.display_name,
                    'capacity': room.capacity,
                    'student_count': room.number_of_students(),
                })
            data.append({
                'id': grade.id,
                'name': grade.name,
                'level': grade.level,
                'order': grade.order,
                'tuition_fee': as_number(grade.tuition_fee),
                'capacity': grade.capacity,
                'enrolled': grade.enrolled,
                'rooms': rooms,
            })
        return JsonResponse({'school_year': school_year.name, 'grades': data})


class ActivityLogView(ApiView):
    permission_required = 'admin_site.view_activitylogmodel'

    def get(self, request, *args, **kwargs):
        queryset = ActivityLogModel.objects.all()
        category = request.GET.get('category')
        if category:
            queryset = queryset.filter(category=category)
        logs, meta = self.paginate(queryset)
        return JsonResponse({
            'logs': [{
                'id': log.id,
                'category': log.category,
                'sub_category': log.sub_category,
                'log': log.log,
                'created_at': log.created_at,
            } for log in logs],
            'pagination': meta,
        })


# ---------------------------------------------------------------------------
# Timetable
# ---------------------------------------------------------------------------

def _serialize_time_period(period):
    return {
        'id': period.id,
        'school_year_id': period.school_year_id,
        'name': period.name,
        'name_fr': period.name_fr,
        'start_time': period.start_time.strftime('%H:%M'),
        'end_time': period.end_time.strftime('%H:%M'),
        'order': period.order,
        'is_active': period.is_active,
    }


def _serialize_slot(slot):
    subject = slot.grade_subject.subject if slot.grade_subject else None
    return {
        'id': slot.id,
        'room_id': slot.room_id,
        'time_period_id': slot.time_period_id,
        'day_of_week': slot.day_of_week,
        'day_name': slot.get_day_of_week_display(),
        'subject': {'id': slot.grade_subject_id, 'name': subject.name, 'code': subject.code} if subject else None,
        'teacher': ({'id': slot.teacher_id, 'name': slot.teacher.get_full_name() or slot.teacher.username}
                    if slot.teacher else None),
        'room_location': slot.room_location,
        'is_break': slot.is_break,
        'notes': slot.notes,
    }


def _merged_form_data(instance, form_class, data):
    """PATCH semantics: fields missing from the body keep their current value."""
    return {**model_to_dict(instance, fields=form_class.Meta.fields), **data}


class TimePeriodListView(ApiView):
    method_permissions = {
        'GET': 'admin_site.view_timeperiodmodel',
        'POST': 'admin_site.add_timeperiodmodel',
    }

    def get(self, request, *args, **kwargs):
        school_year_id = request.GET.get('school_year')
        school_year = (get_object_or_404(SchoolYearModel, pk=school_year_id)
                       if school_year_id else get_active_school_year())
        periods = TimePeriodModel.objects.filter(school_year=school_year) if school_year else []
        return JsonResponse({'time_periods': [_serialize_time_period(p) for p in periods]})

    def post(self, request, *args, **kwargs):
        form = TimePeriodForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        period = form.save()
        return JsonResponse({'success': True, 'time_period': _serialize_time_period(period)}, status=201)


class TimePeriodDetailView(ApiView):
    method_permissions = {
        'GET': 'admin_site.view_timeperiodmodel',
        'PATCH': 'admin_site.change_timeperiodmodel',
        'DELETE': 'admin_site.delete_timeperiodmodel',
    }

    def get_period(self):
        return get_object_or_404(TimePeriodModel, pk=self.kwargs['pk'])

    def get(self, request, *args, **kwargs):
        period = self.get_period()
        data = _serialize_time_period(period)
        data['schedule_slot_count'] = period.schedule_slots.count()
        return JsonResponse(data)

    def patch(self, request, *args, **kwargs):
        period = self.get_period()
        form = TimePeriodForm(_merged_form_data(period, TimePeriodForm, self.get_json()), instance=period)
        if not form.is_valid():
            return self.form_invalid(form)
        period = form.save()
        return JsonResponse({'success': True, 'time_period': _serialize_time_period(period)})

    def delete(self, request, *args, **kwargs):
        period = self.get_period()
        slot_count = period.schedule_slots.count()
        period.delete()
        logger.info(f"Time period {period} deleted by {request.user.username} with {slot_count} schedule slot(s)")
        return JsonResponse({'success': True, 'deleted_schedule_slots': slot_count})


class ScheduleSlotListView(ApiView):
    method_permissions = {
        'GET': 'admin_site.view_scheduleslotmodel',
        'POST': 'admin_site.add_scheduleslotmodel',
    }

    def get(self, request, *args, **kwargs):
        slots = ScheduleSlotModel.objects.select_related('grade_subject__subject', 'teacher', 'time_period')
        if request.GET.get('room'):
            slots = slots.filter(room_id=request.GET['room'])
        if request.GET.get('school_year'):
            slots = slots.filter(time_period__school_year_id=request.GET['school_year'])
        if request.GET.get('day_of_week'):
            slots = slots.filter(day_of_week=request.GET['day_of_week'])
        if request.GET.get('teacher'):
            slots = slots.filter(teacher_id=request.GET['teacher'])
        return JsonResponse({'schedule_slots': [_serialize_slot(s) for s in slots]})

    def post(self, request, *args, **kwargs):
        form = ScheduleSlotForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        slot = timetable.save_schedule_slot(form)
        return JsonResponse({'success': True, 'schedule_slot': _serialize_slot(slot)}, status=201)


class ScheduleSlotDetailView(ApiView):
    method_permissions = {
        'GET': 'admin_site.view_scheduleslotmodel',
        'PATCH': 'admin_site.change_scheduleslotmodel',
        'DELETE': 'admin_site.delete_scheduleslotmodel',
    }

    def get_slot(self):
        return get_object_or_404(ScheduleSlotModel, pk=self.kwargs['pk'])

    def get(self, request, *args, **kwargs):
        return JsonResponse(_serialize_slot(self.get_slot()))

    def patch(self, request, *args, **kwargs):
        slot = self.get_slot()
        data = self.get_json()
        # a slot stays in its room
        data.pop('room', None)
        form = ScheduleSlotForm(_merged_form_data(slot, ScheduleSlotForm, data), instance=slot)
        if not form.is_valid():
            return self.form_invalid(form)
        slot = timetable.save_schedule_slot(form)
        return JsonResponse({'success': True, 'schedule_slot': _serialize_slot(slot)})

    def delete(self, request, *args, **kwargs):
        self.get_slot().delete()
        return JsonResponse({'success': True, 'message': 'Schedule slot deleted.'})


class RoomTimetableView(ApiView):
    """The weekly grid of one room: every active period of every day, with its slot or null."""
    permission_required = 'admin_site.view_scheduleslotmodel'

    def get(self, request, *args, **kwargs):
        room = get_object_or_404(GradeRoomModel.objects.select_related('grade'), pk=self.kwargs['pk'])
        periods, week = timetable.weekly_schedule(room)
        return JsonResponse({
            'room': {'id': room.id, 'display_name': room.display_name, 'grade': room.grade.name},
            'time_periods': [_serialize_time_period(p) for p in periods],
            'weekly_schedule': [{
                'day': day['day'].value,
                'day_name': day['day'].label,
                'periods': [{
                    'time_period_id': period.id,
                    'slot': _serialize_slot(slot) if slot else None,
                } for period, slot in day['periods']],
            } for day in week],
        })
