import logging
from datetime import timedelta
from decimal import Decimal, ROUND_CEILING

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from admin_site.models import GradeRoomModel
from .assignment import auto_assign_students
from .models import (
    StudentModel, EnrollmentModel, EnrollmentNoteModel, PaymentScheduleModel, StudentRoomAssignmentModel,
    AUTO_APPROVAL_DELAY_DAYS
)
from .utils import calculate_payment_schedules, calculate_enrollment_summary

logger = logging.getLogger(__name__)

# A first payment of at least a ninth of the tuition (one month) completes
# an enrollment whose fee was not adjusted.
MINIMUM_PAYMENT_DIVISOR = 9


def create_enrollment(form, created_by):
    """Saves a validated EnrollmentForm as a new draft with its enrollment number."""
    with transaction.atomic():
        enrollment = form.save(commit=False)
        enrollment.status = EnrollmentModel.Status.DRAFT
        enrollment.original_tuition_fee = enrollment.grade.tuition_fee
        enrollment.created_by = created_by
        enrollment.enrollment_number = enrollment.generate_enrollment_number()
        enrollment.save()
    logger.info(f"Enrollment {enrollment.enrollment_number} created by {created_by}")
    return enrollment


def _missing_submission_fields(enrollment):
    errors = []
    if not (enrollment.first_name or '').strip():
        errors.append("First name is required.")
    if not (enrollment.last_name or '').strip():
        errors.append("Last name is required.")
    if not enrollment.father_name and not enrollment.mother_name:
        errors.append("At least one parent name is required.")
    if not enrollment.phone and not enrollment.father_phone and not enrollment.mother_phone:
        errors.append("At least one phone number is required.")
    return errors


def submit_enrollment(enrollment, submitted_by, payment=None):
    """
    Submits a draft: creates the student record for a new student, the three
    payment schedules and, when `payment` is given (amount, method, optional
    receipt_number / transaction_ref), the first payment.

    An adjusted fee sends the enrollment to director review. Otherwise a first
    payment of at least a ninth of the tuition completes it immediately, and
    without one it waits for automatic approval.
    """
    # local import, finance depends on this app's models
    from finance.services import record_payment

    if enrollment.status != EnrollmentModel.Status.DRAFT:
        raise ValidationError("Enrollment has already been submitted.", code='invalid_status')

    errors = _missing_submission_fields(enrollment)
    if errors:
        raise ValidationError(errors, code='incomplete')

    today = timezone.localdate()
    if not enrollment.school_year.is_within_enrollment_period(today):
        raise ValidationError("Enrollment is closed for this school year.", code='enrollment_closed')

    tuition_fee = enrollment.tuition_fee
    payment_amount = Decimal(payment['amount']) if payment else Decimal('0')
    threshold = (tuition_fee / MINIMUM_PAYMENT_DIVISOR).to_integral_value(rounding=ROUND_CEILING)

    if enrollment.fee_was_adjusted:
        new_status = EnrollmentModel.Status.NEEDS_REVIEW
    elif payment and payment_amount >= threshold:
        new_status = EnrollmentModel.Status.COMPLETED
    else:
        new_status = EnrollmentModel.Status.SUBMITTED

    now = timezone.now()
    with transaction.atomic():
        enrollment = EnrollmentModel.objects.select_for_update().get(pk=enrollment.pk)

        if enrollment.student is None:
            enrollment.student = StudentModel.objects.create(
                first_name=enrollment.first_name,
                last_name=enrollment.last_name,
                date_of_birth=enrollment.date_of_birth,
                gender=enrollment.gender,
                phone=enrollment.phone,
                email=enrollment.email,
                guardian_name=enrollment.father_name or enrollment.mother_name,
                guardian_phone=enrollment.father_phone or enrollment.mother_phone,
            )

        enrollment.status = new_status
        enrollment.submitted_at = now
        enrollment.draft_expires_at = None
        enrollment.auto_approve_at = (
            now + timedelta(days=AUTO_APPROVAL_DELAY_DAYS) if new_status == EnrollmentModel.Status.SUBMITTED else None
        )
        if new_status == EnrollmentModel.Status.COMPLETED:
            enrollment.approved_at = now
            enrollment.approved_by = submitted_by
        enrollment.status_changed_at = now
        enrollment.status_changed_by = submitted_by
        enrollment.save()

        for schedule in calculate_payment_schedules(tuition_fee, enrollment.school_year.start_date):
            PaymentScheduleModel.objects.create(enrollment=enrollment, **schedule)

        if payment:
            record_payment(
                enrollment=enrollment,
                amount=payment_amount,
                method=payment['method'],
                recorded_by=submitted_by,
                receipt_number=payment.get('receipt_number'),
                transaction_ref=payment.get('transaction_ref'),
            )

    logger.info(f"Enrollment {enrollment.enrollment_number} submitted with status {new_status}")
    return enrollment


def approve_enrollment(enrollment, approved_by=None, comment=None, automatic=False):
    if enrollment.status not in (EnrollmentModel.Status.SUBMITTED, EnrollmentModel.Status.NEEDS_REVIEW):
        raise ValidationError("Enrollment cannot be approved in its current status.", code='invalid_status')
    if not automatic and not (comment or '').strip():
        raise ValidationError("A comment is required when completing an enrollment.", code='comment_required')

    now = timezone.now()
    enrollment.status = EnrollmentModel.Status.COMPLETED
    enrollment.approved_at = now
    enrollment.approved_by = approved_by
    enrollment.status_changed_at = now
    enrollment.status_changed_by = approved_by
    enrollment.status_comment = (comment or '').strip() or "Approved automatically"
    enrollment.auto_approve_at = None
    enrollment.save()
    logger.info(f"Enrollment {enrollment.enrollment_number} approved ({'auto' if automatic else approved_by})")
    return enrollment


def _close_enrollment(enrollment, user, reason, status, title):
    now = timezone.now()
    with transaction.atomic():
        EnrollmentNoteModel.objects.create(enrollment=enrollment, title=title, content=reason, created_by=user)
        enrollment.status = status
        enrollment.status_changed_at = now
        enrollment.status_changed_by = user
        enrollment.status_comment = reason
        enrollment.draft_expires_at = None
        enrollment.auto_approve_at = None
        enrollment.save()
    return enrollment


def reject_enrollment(enrollment, rejected_by, reason):
    if enrollment.status not in (EnrollmentModel.Status.SUBMITTED, EnrollmentModel.Status.NEEDS_REVIEW):
        raise ValidationError("Enrollment cannot be rejected in its current status.", code='invalid_status')
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError("A reason is required when rejecting an enrollment.", code='reason_required')
    logger.info(f"Enrollment {enrollment.enrollment_number} rejected by {rejected_by}")
    return _close_enrollment(enrollment, rejected_by, reason, EnrollmentModel.Status.REJECTED, "Enrollment Rejected")


def cancel_enrollment(enrollment, cancelled_by, reason):
    if enrollment.status != EnrollmentModel.Status.DRAFT:
        raise ValidationError("Only draft enrollments can be cancelled.", code='invalid_status')
    reason = (reason or '').strip()
    if not reason:
        raise ValidationError("A reason is required when cancelling an enrollment.", code='reason_required')
    logger.info(f"Enrollment {enrollment.enrollment_number} cancelled by {cancelled_by}")
    return _close_enrollment(enrollment, cancelled_by, reason, EnrollmentModel.Status.CANCELLED,
                             "Enrollment Cancelled")


def auto_approve_due_enrollments(now=None):
    now = now or timezone.now()
    due = EnrollmentModel.objects.filter(status=EnrollmentModel.Status.SUBMITTED, auto_approve_at__lte=now)
    approved = 0
    for enrollment in due:
        approve_enrollment(enrollment, automatic=True)
        approved += 1
    return approved


def expire_draft_enrollments(now=None):
    now = now or timezone.now()
    expired = EnrollmentModel.objects.filter(status=EnrollmentModel.Status.DRAFT, draft_expires_at__lt=now)
    count = 0
    for enrollment in expired:
        _close_enrollment(enrollment, None, "Draft expired", EnrollmentModel.Status.CANCELLED, "Draft Expired")
        count += 1
    return count


def enrollment_summary(enrollment):
    payments = [{'amount': p.amount, 'status': p.status} for p in enrollment.payments.all()]
    return calculate_enrollment_summary(enrollment.tuition_fee, payments)


# ---------------------------------------------------------------------------
# Room assignment
# ---------------------------------------------------------------------------

def enrolled_students(grade):
    """Students with a completed enrollment in the grade, with their enrollment date."""
    enrollments = EnrollmentModel.objects.filter(
        grade=grade, school_year=grade.school_year,
        status=EnrollmentModel.Status.COMPLETED, student__isnull=False
    ).select_related('student')
    return [(e.student, e.submitted_at or e.created_at) for e in enrollments]


def auto_assign_grade_rooms(grade, assigned_by, room_ids=None):
    rooms_qs = GradeRoomModel.objects.filter(grade=grade, is_active=True)
    if room_ids:
        rooms_qs = rooms_qs.filter(pk__in=room_ids)
        if rooms_qs.count() != len(set(room_ids)):
            raise ValidationError("One or more rooms were not found or are inactive.", code='invalid_rooms')

    school_year = grade.school_year
    assigned_ids = set(StudentRoomAssignmentModel.objects.filter(
        grade_room__grade=grade, school_year=school_year, is_active=True
    ).values_list('student_id', flat=True))

    candidates = []
    for student, enrolled_at in enrolled_students(grade):
        if student.id in assigned_ids:
            continue
        candidates.append({
            'id': student.id,
            'gender': student.gender,
            'date_of_birth': student.date_of_birth,
            'enrollment_date': enrolled_at,
            'is_locked': student.is_locked_for_auto_assign,
        })

    rooms = [{
        'id': room.id,
        'display_name': room.display_name,
        'capacity': room.capacity,
        'current_count': room.number_of_students(),
    } for room in rooms_qs]

    result = auto_assign_students(candidates, rooms, today=timezone.localdate())

    with transaction.atomic():
        # re-read inside the transaction so a concurrent run does not double-assign
        already = set(StudentRoomAssignmentModel.objects.select_for_update().filter(
            student_id__in=[student_id for student_id, _ in result['assignments']],
            school_year=school_year, is_active=True
        ).values_list('student_id', flat=True))
        created = 0
        for student_id, room_id in result['assignments']:
            if student_id in already:
                continue
            StudentRoomAssignmentModel.objects.create(
                student_id=student_id, grade_room_id=room_id, school_year=school_year, assigned_by=assigned_by
            )
            created += 1

    logger.info(f"Auto-assigned {created} student(s) in {grade} (balance score "
                f"{result['balance_report']['balance_score']})")
    return {
        'total_students': len(candidates),
        'assigned_count': created,
        'unassigned_count': len(result['unassigned']) + (len(result['assignments']) - created),
        'balance_report': result['balance_report'],
    }


def assign_students_to_room(students, room, assigned_by):
    """
    Places the students in `room`, moving them out of any other room of the
    same school year. Used for manual assignment and bulk moves.
    """
    school_year = room.grade.school_year
    enrolled_ids = {student.id for student, _ in enrolled_students(room.grade)}
    for student in students:
        if student.id not in enrolled_ids:
            raise ValidationError(f"{student} is not enrolled in {room.grade}.", code='not_enrolled')

    with transaction.atomic():
        room = GradeRoomModel.objects.select_for_update().get(pk=room.pk)
        incoming = [s for s in students if not room.assignments.filter(student=s, is_active=True).exists()]
        free_places = room.capacity - room.number_of_students()
        if len(incoming) > free_places:
            raise ValidationError(
                "Not enough places in %(room)s.", code='room_full',
                params={'room': room.display_name, 'available': free_places, 'required': len(incoming)}
            )

        for student in incoming:
            StudentRoomAssignmentModel.objects.filter(
                student=student, school_year=school_year, is_active=True
            ).update(is_active=False)
            StudentRoomAssignmentModel.objects.create(
                student=student, grade_room=room, school_year=school_year, assigned_by=assigned_by
            )

    logger.info(f"{len(incoming)} student(s) assigned to {room} by {assigned_by}")
    return len(incoming)
