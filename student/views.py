import io
import logging
from decimal import Decimal, InvalidOperation

from django.db.models import Count, Q
from django.http import JsonResponse, HttpResponse
from django.shortcuts import get_object_or_404
from xlsxwriter import Workbook

from admin_site.models import GradeModel, GradeRoomModel, ActivityLogModel
from admin_site.views import ApiView, as_number
from .forms import EnrollmentForm, SubmitEnrollmentForm, EnrollmentDecisionForm, AutoAssignForm, RoomAssignmentForm
from .models import EnrollmentModel, StudentModel, StudentRoomAssignmentModel
from .utils import calculate_payment_coverage, format_phone_number
from . import services

logger = logging.getLogger(__name__)


def _money(values):
    return {key: as_number(val) if isinstance(val, Decimal) else val for key, val in values.items()}


def serialize_enrollment(enrollment):
    return {
        'id': enrollment.id,
        'enrollment_number': enrollment.enrollment_number,
        'status': enrollment.status,
        'school_year': str(enrollment.school_year),
        'school_year_id': enrollment.school_year_id,
        'grade': enrollment.grade.name,
        'grade_id': enrollment.grade_id,
        'student_id': enrollment.student_id,
        'student_number': enrollment.student.student_number if enrollment.student else None,
        'is_returning_student': enrollment.is_returning_student,
        'first_name': enrollment.first_name,
        'last_name': enrollment.last_name,
        'date_of_birth': enrollment.date_of_birth,
        'gender': enrollment.gender,
        'phone': enrollment.phone,
        'email': enrollment.email,
        'father_name': enrollment.father_name,
        'father_phone': enrollment.father_phone,
        'mother_name': enrollment.mother_name,
        'mother_phone': enrollment.mother_phone,
        'address': enrollment.address,
        'original_tuition_fee': as_number(enrollment.original_tuition_fee),
        'adjusted_tuition_fee': as_number(enrollment.adjusted_tuition_fee),
        'adjustment_reason': enrollment.adjustment_reason,
        'tuition_fee': as_number(enrollment.tuition_fee),
        'status_comment': enrollment.status_comment,
        'draft_expires_at': enrollment.draft_expires_at,
        'submitted_at': enrollment.submitted_at,
        'auto_approve_at': enrollment.auto_approve_at,
        'approved_at': enrollment.approved_at,
        'created_at': enrollment.created_at,
    }


def _schedules(enrollment):
    return [{
        'schedule_number': schedule.schedule_number,
        'amount': as_number(schedule.amount),
        'months': schedule.months,
        'due_date': schedule.due_date,
        'is_paid': schedule.is_paid,
        'paid_at': schedule.paid_at,
    } for schedule in enrollment.payment_schedules.order_by('schedule_number')]


class EnrollmentListView(ApiView):
    method_permissions = {
        'GET': 'student.view_enrollmentmodel',
        'POST': 'student.add_enrollmentmodel',
    }

    def get(self, request, *args, **kwargs):
        queryset = EnrollmentModel.objects.select_related('school_year', 'grade', 'student')

        for param, lookup in (('school_year', 'school_year_id'), ('grade', 'grade_id')):
            value = request.GET.get(param)
            if value:
                queryset = queryset.filter(**{lookup: value})

        stats = {row['status']: row['count'] for row in queryset.values('status').annotate(count=Count('id'))}

        status = request.GET.get('status')
        if status:
            queryset = queryset.filter(status=status)
        search = request.GET.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(first_name__icontains=search) | Q(last_name__icontains=search) |
                Q(enrollment_number__icontains=search) | Q(student__student_number__icontains=search)
            )

        enrollments, meta = self.paginate(queryset)
        return JsonResponse({
            'enrollments': [serialize_enrollment(e) for e in enrollments],
            'stats': {choice: stats.get(choice, 0) for choice in EnrollmentModel.Status.values},
            'pagination': meta,
        })

    def post(self, request, *args, **kwargs):
        form = EnrollmentForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        enrollment = services.create_enrollment(form, request.user)
        return JsonResponse({'success': True, 'enrollment': serialize_enrollment(enrollment)}, status=201)


class EnrollmentDetailView(ApiView):
    """
    Enrollment with its schedules, payments and payment summary. A `amount`
    query parameter previews which schedules and months that payment would cover.
    """
    permission_required = 'student.view_enrollmentmodel'

    def get(self, request, *args, **kwargs):
        enrollment = get_object_or_404(
            EnrollmentModel.objects.select_related('school_year', 'grade', 'student'), pk=self.kwargs['pk']
        )
        schedules = _schedules(enrollment)
        payments = list(enrollment.payments.all())

        data = {
            'enrollment': serialize_enrollment(enrollment),
            'summary': _money(services.enrollment_summary(enrollment)),
            'schedules': [_money(s) for s in schedules],
            'payments': [{
                'id': p.id,
                'amount': as_number(p.amount),
                'method': p.method,
                'status': p.status,
                'receipt_number': p.receipt_number,
                'recorded_at': p.recorded_at,
            } for p in payments],
            'notes': [{
                'title': note.title,
                'content': note.content,
                'created_by': note.created_by.username if note.created_by else None,
                'created_at': note.created_at,
            } for note in enrollment.notes.all()],
        }

        amount = request.GET.get('amount')
        if amount:
            try:
                amount = Decimal(amount)
            except InvalidOperation:
                return JsonResponse({'success': False, 'message': 'Invalid amount.'}, status=400)
            coverage = calculate_payment_coverage(
                amount, schedules, [{'amount': p.amount, 'status': p.status} for p in payments]
            )
            data['coverage'] = _money(coverage)
        return JsonResponse(data)


class EnrollmentSubmitView(ApiView):
    permission_required = 'student.change_enrollmentmodel'

    def post(self, request, *args, **kwargs):
        enrollment = get_object_or_404(EnrollmentModel, pk=self.kwargs['pk'])
        form = SubmitEnrollmentForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        payment = form.payment()
        if payment and not request.user.has_perm('finance.add_paymentmodel'):
            return JsonResponse({'success': False, 'message': 'You are not allowed to record payments.'},
                                status=403)
        enrollment = services.submit_enrollment(enrollment, request.user, payment=payment)
        return JsonResponse({'success': True, 'enrollment': serialize_enrollment(enrollment)})


class EnrollmentDecisionView(ApiView):
    """Base for approve / reject / cancel, which all take a mandatory comment."""
    action = None

    def perform(self, enrollment, comment):
        raise NotImplementedError

    def post(self, request, *args, **kwargs):
        enrollment = get_object_or_404(EnrollmentModel, pk=self.kwargs['pk'])
        form = EnrollmentDecisionForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        enrollment = self.perform(enrollment, form.cleaned_data['comment'])
        ActivityLogModel.objects.create(
            category='enrollment', sub_category=self.action, school_year=enrollment.school_year,
            log=f"{request.user.username} {self.action} enrollment {enrollment.enrollment_number}"
        )
        return JsonResponse({'success': True, 'enrollment': serialize_enrollment(enrollment)})


class EnrollmentApproveView(EnrollmentDecisionView):
    permission_required = 'student.approve_enrollmentmodel'
    action = 'approved'

    def perform(self, enrollment, comment):
        return services.approve_enrollment(enrollment, approved_by=self.request.user, comment=comment)


class EnrollmentRejectView(EnrollmentDecisionView):
    permission_required = 'student.approve_enrollmentmodel'
    action = 'rejected'

    def perform(self, enrollment, comment):
        return services.reject_enrollment(enrollment, self.request.user, comment)


class EnrollmentCancelView(EnrollmentDecisionView):
    permission_required = 'student.change_enrollmentmodel'
    action = 'cancelled'

    def perform(self, enrollment, comment):
        return services.cancel_enrollment(enrollment, self.request.user, comment)


class StudentListView(ApiView):
    permission_required = 'student.view_studentmodel'

    def get(self, request, *args, **kwargs):
        queryset = StudentModel.objects.all()
        status = request.GET.get('status')
        if status:
            queryset = queryset.filter(status=status)
        search = request.GET.get('search', '').strip()
        if search:
            queryset = queryset.filter(
                Q(first_name__icontains=search) | Q(last_name__icontains=search) |
                Q(student_number__icontains=search)
            )
        students, meta = self.paginate(queryset)
        return JsonResponse({
            'students': [{
                'id': s.id,
                'student_number': s.student_number,
                'first_name': s.first_name,
                'last_name': s.last_name,
                'date_of_birth': s.date_of_birth,
                'gender': s.gender,
                'status': s.status,
                'is_locked_for_auto_assign': s.is_locked_for_auto_assign,
            } for s in students],
            'pagination': meta,
        })


class GradeAutoAssignView(ApiView):
    permission_required = 'student.add_studentroomassignmentmodel'

    def post(self, request, *args, **kwargs):
        grade = get_object_or_404(GradeModel, pk=self.kwargs['pk'])
        form = AutoAssignForm(self.get_json(), grade=grade)
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.auto_assign_grade_rooms(grade, request.user, room_ids=form.cleaned_data['room_ids'])
        return JsonResponse({'success': True, **result})


class RoomAssignmentView(ApiView):
    """Assigns students to a room, moving them out of their current room if they have one."""
    permission_required = 'student.change_studentroomassignmentmodel'

    def post(self, request, *args, **kwargs):
        form = RoomAssignmentForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        room = form.cleaned_data['room']
        moved = services.assign_students_to_room(list(form.cleaned_data['students']), room, request.user)
        return JsonResponse({
            'success': True,
            'message': f"{moved} student(s) assigned to {room.display_name}.",
            'assigned_count': moved,
            'room': {'id': room.id, 'display_name': room.display_name, 'student_count': room.number_of_students()},
        })


class RoomRosterExportView(ApiView):
    permission_required = 'student.view_studentroomassignmentmodel'

    def get(self, request, *args, **kwargs):
        room = get_object_or_404(GradeRoomModel.objects.select_related('grade'), pk=self.kwargs['pk'])
        assignments = StudentRoomAssignmentModel.objects.filter(
            grade_room=room, is_active=True
        ).select_related('student').order_by('student__last_name', 'student__first_name')

        output = io.BytesIO()
        workbook = Workbook(output, {'in_memory': True})
        worksheet = workbook.add_worksheet(room.display_name[:31])
        bold = workbook.add_format({'bold': True})

        headers = ['No.', 'Student Number', 'Last Name', 'First Name', 'Gender', 'Date of Birth', 'Guardian',
                   'Guardian Phone']
        for col_num, header in enumerate(headers):
            worksheet.write(0, col_num, header, bold)

        for row_num, assignment in enumerate(assignments, 1):
            student = assignment.student
            worksheet.write(row_num, 0, row_num)
            worksheet.write(row_num, 1, student.student_number)
            worksheet.write(row_num, 2, student.last_name)
            worksheet.write(row_num, 3, student.first_name)
            worksheet.write(row_num, 4, student.get_gender_display() if student.gender else '')
            worksheet.write(row_num, 5, student.date_of_birth.strftime('%d/%m/%Y') if student.date_of_birth else '')
            worksheet.write(row_num, 6, student.guardian_name or '')
            worksheet.write(row_num, 7, format_phone_number(student.guardian_phone))

        workbook.close()
        output.seek(0)

        filename = f"{room.display_name}-Student-List.xlsx".replace(' ', '_')
        response = HttpResponse(
            output.read(),
            content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        response['Content-Disposition'] = f"attachment; filename={filename}"
        return response
