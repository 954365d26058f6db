import json
from datetime import date, timedelta
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone

from admin_site.testing import create_school_year, create_grade, create_room, create_user
from finance.models import TreasuryBalanceModel, PaymentModel
from student import services
from student.assignment import auto_assign_students, gender_penalty, age_penalty, balance_score, round_half_up
from student.forms import EnrollmentForm
from student.models import EnrollmentModel, StudentModel, StudentRoomAssignmentModel
from student.tasks import auto_approve_enrollments_task, expire_draft_enrollments_task
from student.utils import calculate_payment_schedules, calculate_payment_coverage, calculate_enrollment_summary, \
    clean_phone, normalize_gender, format_phone_number


class PaymentScheduleTests(TestCase):

    def test_remainder_goes_to_last_schedule(self):
        schedules = calculate_payment_schedules(Decimal('1000000'), date(2025, 9, 1))
        self.assertEqual([s['amount'] for s in schedules],
                         [Decimal('333333'), Decimal('333333'), Decimal('333334')])
        self.assertEqual(sum(s['amount'] for s in schedules), Decimal('1000000'))

    def test_months_and_due_dates(self):
        schedules = calculate_payment_schedules(Decimal('900000'), date(2025, 9, 1))
        self.assertEqual(schedules[0]['months'], ['September', 'October', 'May'])
        self.assertEqual(schedules[2]['months'], ['February', 'March', 'April'])
        self.assertEqual([s['due_date'] for s in schedules],
                         [date(2025, 9, 1), date(2025, 11, 1), date(2026, 2, 1)])

    def test_coverage_of_new_payment(self):
        schedules = calculate_payment_schedules(Decimal('900000'), date(2025, 9, 1))
        coverage = calculate_payment_coverage(Decimal('400000'), schedules, [])
        first, second = coverage['schedules_covered']
        self.assertEqual(first['percent_covered'], 100)
        self.assertEqual(first['months_covered'], ['September', 'October', 'May'])
        self.assertEqual(second['percent_covered'], 33)
        self.assertEqual(second['months_covered'], ['November'])
        self.assertEqual(coverage['remaining_amount'], Decimal('0'))

    def test_coverage_skips_what_is_already_paid(self):
        schedules = calculate_payment_schedules(Decimal('900000'), date(2025, 9, 1))
        existing = [{'amount': Decimal('300000'), 'status': 'confirmed'},
                    {'amount': Decimal('50000'), 'status': 'reversed'}]
        coverage = calculate_payment_coverage(Decimal('200000'), schedules, existing)
        self.assertEqual(len(coverage['schedules_covered']), 1)
        self.assertEqual(coverage['schedules_covered'][0]['schedule_number'], 2)
        self.assertEqual(coverage['schedules_covered'][0]['percent_covered'], 67)
        self.assertEqual(coverage['schedules_covered'][0]['months_covered'], ['November', 'December'])

    def test_coverage_reports_leftover(self):
        schedules = calculate_payment_schedules(Decimal('300000'), date(2025, 9, 1))
        coverage = calculate_payment_coverage(Decimal('400000'), schedules, [])
        self.assertEqual(coverage['total_covered'], Decimal('300000'))
        self.assertEqual(coverage['remaining_amount'], Decimal('100000'))

    def test_enrollment_summary(self):
        summary = calculate_enrollment_summary(Decimal('900000'), [
            {'amount': Decimal('300000'), 'status': 'confirmed'},
            {'amount': Decimal('100000'), 'status': 'failed'},
        ])
        self.assertEqual(summary['total_paid'], Decimal('300000'))
        self.assertEqual(summary['total_remaining'], Decimal('600000'))
        self.assertEqual(summary['percent_paid'], 33)
        self.assertFalse(summary['is_fully_paid'])

    def test_summary_with_nothing_owed(self):
        summary = calculate_enrollment_summary(Decimal('0'), [])
        self.assertEqual(summary['percent_paid'], 0)
        self.assertTrue(summary['is_fully_paid'])


class UtilsTests(TestCase):

    def test_clean_phone(self):
        self.assertEqual(clean_phone('622 11 22 33'), '622112233')
        self.assertEqual(clean_phone('12-34 / +224 622 11 22 33'), '+224622112233')
        self.assertIsNone(clean_phone('1234'))

    def test_format_phone_number(self):
        self.assertEqual(format_phone_number('+224622112233'), '+224 622 11 22 33')
        self.assertEqual(format_phone_number('622112233'), '622 11 22 33')

    def test_normalize_gender(self):
        self.assertEqual(normalize_gender('Fille'), 'female')
        self.assertEqual(normalize_gender('m'), 'male')
        self.assertIsNone(normalize_gender('x'))


def student_dict(student_id, gender, day, dob=date(2013, 5, 1), locked=False):
    return {'id': student_id, 'gender': gender, 'date_of_birth': dob,
            'enrollment_date': date(2025, 7, day), 'is_locked': locked}


class AutoAssignAlgorithmTests(TestCase):

    def setUp(self):
        self.rooms = [
            {'id': 1, 'display_name': '6eme A', 'capacity': 2, 'current_count': 0},
            {'id': 2, 'display_name': '6eme B', 'capacity': 2, 'current_count': 0},
        ]
        self.today = date(2025, 9, 1)

    def test_balances_gender_across_rooms(self):
        students = [
            student_dict(10, 'male', 1), student_dict(11, 'male', 2),
            student_dict(12, 'female', 3), student_dict(13, 'female', 4),
        ]
        result = auto_assign_students(students, self.rooms, today=self.today)

        self.assertEqual(result['assignments'], [(10, 1), (11, 2), (12, 1), (13, 2)])
        self.assertEqual(result['unassigned'], [])
        report = result['balance_report']
        self.assertEqual(report['balance_score'], 100)
        self.assertEqual(report['overall_gender_ratio'], {'male': 50, 'female': 50, 'unknown': 0})
        self.assertEqual(report['room_distributions'][0]['average_age'], 12.0)

    def test_first_come_first_served_and_locked_students_skipped(self):
        students = [
            student_dict(20, 'male', 5), student_dict(21, 'female', 1), student_dict(22, 'female', 2, locked=True),
            student_dict(23, 'male', 3), student_dict(24, 'female', 4), student_dict(25, None, 6),
        ]
        result = auto_assign_students(students, self.rooms, today=self.today)
        assigned_ids = [student_id for student_id, _ in result['assignments']]
        self.assertEqual(assigned_ids, [21, 23, 24, 20])
        self.assertEqual([s['id'] for s in result['unassigned']], [25])

    def test_existing_occupancy_counts(self):
        rooms = [
            {'id': 1, 'display_name': 'A', 'capacity': 10, 'current_count': 8},
            {'id': 2, 'display_name': 'B', 'capacity': 10, 'current_count': 0},
        ]
        result = auto_assign_students([student_dict(1, None, 1, dob=None)], rooms, today=self.today)
        self.assertEqual(result['assignments'], [(1, 2)])

    def test_penalties(self):
        stats = {'male': 1, 'female': 1, 'unknown': 0, 'age_sum': 24, 'age_count': 2, 'count': 2}
        target = {'male': 0.5, 'female': 0.5}
        self.assertEqual(gender_penalty(stats, None, target), 0)
        self.assertAlmostEqual(gender_penalty(stats, 'male', target), (1 / 6 + 1 / 6) * 50)
        self.assertEqual(age_penalty(stats, 12, 12), 0)
        self.assertEqual(age_penalty(stats, 30, 12), 100)

    def test_report_rounds_halves_up(self):
        self.assertEqual(round_half_up(12.5), 13)
        self.assertEqual(round_half_up(12.25, 1), 12.3)

        students = [student_dict(30, 'male', 1)] + [student_dict(31 + i, 'female', 2 + i) for i in range(7)]
        rooms = [
            {'id': 1, 'display_name': '6eme A', 'capacity': 4, 'current_count': 0},
            {'id': 2, 'display_name': '6eme B', 'capacity': 4, 'current_count': 0},
        ]
        report = auto_assign_students(students, rooms, today=self.today)['balance_report']
        self.assertEqual(report['overall_gender_ratio'], {'male': 13, 'female': 88, 'unknown': 0})

        # one boy among 32 against a 1 in 8 target deviates by 3/16, a 62.5 score
        room = {'male_count': 1, 'female_count': 31}
        self.assertEqual(balance_score([room], {'male': 0.125, 'female': 0.875}), 63)


class EnrollmentTestCase(TestCase):

    def setUp(self):
        self.user = create_user('secretary')
        self.director = create_user('director')
        self.school_year = create_school_year()
        self.grade = create_grade(self.school_year, tuition_fee=Decimal('900000'))
        TreasuryBalanceModel.objects.create(safe_balance=Decimal('5000000'))

    def form_data(self, **overrides):
        data = {
            'school_year': self.school_year.pk,
            'grade': self.grade.pk,
            'first_name': 'Fatoumata',
            'last_name': 'Bah',
            'date_of_birth': '2013-04-12',
            'gender': 'F',
            'father_name': 'Mamadou Bah',
            'father_phone': '622 11 22 33',
        }
        data.update(overrides)
        return data

    def create_draft(self, **overrides):
        form = EnrollmentForm(self.form_data(**overrides))
        self.assertTrue(form.is_valid(), form.errors)
        return services.create_enrollment(form, self.user)


class EnrollmentLifecycleTests(EnrollmentTestCase):

    def test_create_draft(self):
        enrollment = self.create_draft()
        self.assertEqual(enrollment.status, EnrollmentModel.Status.DRAFT)
        self.assertEqual(enrollment.enrollment_number, 'ENR-2025-00001')
        self.assertEqual(enrollment.original_tuition_fee, Decimal('900000'))
        self.assertEqual(enrollment.gender, 'female')
        self.assertEqual(enrollment.father_phone, '622112233')
        self.assertAlmostEqual(enrollment.draft_expires_at, timezone.now() + timedelta(days=10),
                               delta=timedelta(minutes=1))
        self.assertEqual(self.create_draft(first_name='Kadiatou').enrollment_number, 'ENR-2025-00002')

    def test_grade_must_belong_to_school_year(self):
        other_year = create_school_year(name='2024 - 2025', start_date=date(2024, 9, 1), end_date=date(2025, 6, 30),
                                        is_active=False)
        form = EnrollmentForm(self.form_data(school_year=other_year.pk))
        self.assertFalse(form.is_valid())
        self.assertIn('grade', form.errors)

    def test_adjusted_fee_needs_reason(self):
        form = EnrollmentForm(self.form_data(adjusted_tuition_fee='600000'))
        self.assertFalse(form.is_valid())
        self.assertIn('adjustment_reason', form.errors)

    def test_submit_without_payment(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)

        self.assertEqual(enrollment.status, EnrollmentModel.Status.SUBMITTED)
        self.assertIsNotNone(enrollment.student)
        self.assertTrue(enrollment.student.student_number.startswith('STU-'))
        self.assertIsNone(enrollment.draft_expires_at)
        self.assertAlmostEqual(enrollment.auto_approve_at, enrollment.submitted_at + timedelta(days=3),
                               delta=timedelta(seconds=1))
        self.assertEqual(enrollment.payment_schedules.count(), 3)

    def test_submit_with_one_month_payment_completes(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user, payment={
            'amount': Decimal('100000'), 'method': PaymentModel.Method.CASH})

        self.assertEqual(enrollment.status, EnrollmentModel.Status.COMPLETED)
        self.assertIsNone(enrollment.auto_approve_at)
        self.assertEqual(enrollment.payments.get().amount, Decimal('100000'))
        self.assertEqual(TreasuryBalanceModel.objects.get().registry_balance, Decimal('100000'))

    def test_submit_with_small_payment_waits(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user, payment={
            'amount': Decimal('99999'), 'method': PaymentModel.Method.CASH})
        self.assertEqual(enrollment.status, EnrollmentModel.Status.SUBMITTED)

    def test_submit_with_adjusted_fee_needs_review(self):
        draft = self.create_draft(adjusted_tuition_fee='600000', adjustment_reason='Sibling discount')
        enrollment = services.submit_enrollment(draft, self.user, payment={
            'amount': Decimal('600000'), 'method': PaymentModel.Method.CASH})
        self.assertEqual(enrollment.status, EnrollmentModel.Status.NEEDS_REVIEW)
        self.assertIsNone(enrollment.auto_approve_at)
        self.assertEqual(sum(s.amount for s in enrollment.payment_schedules.all()), Decimal('600000'))

    def test_submit_outside_enrollment_period(self):
        self.school_year.enrollment_end = timezone.localdate() - timedelta(days=1)
        self.school_year.save()
        with self.assertRaises(ValidationError) as ctx:
            services.submit_enrollment(self.create_draft(), self.user)
        self.assertEqual(ctx.exception.code, 'enrollment_closed')

    def test_submit_requires_contact(self):
        draft = self.create_draft(father_phone='')
        with self.assertRaises(ValidationError):
            services.submit_enrollment(draft, self.user)

    def test_submit_twice_refused(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)
        with self.assertRaises(ValidationError):
            services.submit_enrollment(enrollment, self.user)

    def test_returning_student_is_reused(self):
        first = services.submit_enrollment(self.create_draft(), self.user)
        next_year = create_school_year(name='2026 - 2027', start_date=date(2026, 9, 1), end_date=date(2027, 6, 30),
                                       is_active=False)
        grade = create_grade(next_year, name='5eme')
        draft = self.create_draft(school_year=next_year.pk, grade=grade.pk, student=first.student.pk,
                                  is_returning_student=True)
        enrollment = services.submit_enrollment(draft, self.user)
        self.assertEqual(enrollment.student, first.student)
        self.assertEqual(StudentModel.objects.count(), 1)
        self.assertEqual(enrollment.enrollment_number, 'ENR-2026-00001')

    def test_approve_requires_comment(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)
        with self.assertRaises(ValidationError):
            services.approve_enrollment(enrollment, approved_by=self.director, comment='  ')
        services.approve_enrollment(enrollment, approved_by=self.director, comment='Documents checked')
        enrollment.refresh_from_db()
        self.assertEqual(enrollment.status, EnrollmentModel.Status.COMPLETED)
        self.assertEqual(enrollment.approved_by, self.director)

    def test_reject_keeps_note(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)
        services.reject_enrollment(enrollment, self.director, 'Missing birth certificate')
        enrollment.refresh_from_db()
        self.assertEqual(enrollment.status, EnrollmentModel.Status.REJECTED)
        self.assertEqual(enrollment.notes.get().content, 'Missing birth certificate')

    def test_only_drafts_can_be_cancelled(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)
        with self.assertRaises(ValidationError):
            services.cancel_enrollment(enrollment, self.user, 'Family moved away')
        draft = self.create_draft(first_name='Kadiatou')
        services.cancel_enrollment(draft, self.user, 'Family moved away')
        self.assertEqual(draft.status, EnrollmentModel.Status.CANCELLED)

    def test_periodic_jobs(self):
        submitted = services.submit_enrollment(self.create_draft(), self.user)
        EnrollmentModel.objects.filter(pk=submitted.pk).update(auto_approve_at=timezone.now() - timedelta(hours=1))
        stale = self.create_draft(first_name='Kadiatou')
        EnrollmentModel.objects.filter(pk=stale.pk).update(draft_expires_at=timezone.now() - timedelta(hours=1))
        fresh = self.create_draft(first_name='Hawa')

        self.assertEqual(auto_approve_enrollments_task(), 1)
        self.assertEqual(expire_draft_enrollments_task(), 1)

        submitted.refresh_from_db()
        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(submitted.status, EnrollmentModel.Status.COMPLETED)
        self.assertEqual(submitted.status_comment, 'Approved automatically')
        self.assertEqual(stale.status, EnrollmentModel.Status.CANCELLED)
        self.assertEqual(fresh.status, EnrollmentModel.Status.DRAFT)


class RoomAssignmentTests(EnrollmentTestCase):

    def setUp(self):
        super().setUp()
        self.room_a = create_room(self.grade, 'A', capacity=2)
        self.room_b = create_room(self.grade, 'B', capacity=2)
        self.students = []
        for first_name, gender in (('Alpha', 'M'), ('Ousmane', 'M'), ('Aissatou', 'F'), ('Hawa', 'F')):
            enrollment = services.submit_enrollment(
                self.create_draft(first_name=first_name, gender=gender), self.user,
                payment={'amount': Decimal('300000'), 'method': PaymentModel.Method.CASH}
            )
            self.students.append(enrollment.student)

    def test_auto_assign_grade(self):
        result = services.auto_assign_grade_rooms(self.grade, self.director)
        self.assertEqual(result['total_students'], 4)
        self.assertEqual(result['assigned_count'], 4)
        self.assertEqual(result['unassigned_count'], 0)
        self.assertEqual(result['balance_report']['balance_score'], 100)
        self.assertEqual(self.room_a.number_of_students(), 2)
        self.assertEqual(self.room_b.number_of_students(), 2)

        # already placed students are left alone on a second run
        self.assertEqual(services.auto_assign_grade_rooms(self.grade, self.director)['total_students'], 0)

    def test_locked_students_not_auto_assigned(self):
        StudentModel.objects.filter(pk=self.students[0].pk).update(is_locked_for_auto_assign=True)
        result = services.auto_assign_grade_rooms(self.grade, self.director)
        self.assertEqual(result['assigned_count'], 3)

    def test_manual_assignment_moves_student(self):
        services.assign_students_to_room([self.students[0]], self.room_a, self.director)
        services.assign_students_to_room([self.students[0]], self.room_b, self.director)
        active = StudentRoomAssignmentModel.objects.filter(student=self.students[0], is_active=True)
        self.assertEqual(active.count(), 1)
        self.assertEqual(active.get().grade_room, self.room_b)

    def test_room_capacity_enforced(self):
        with self.assertRaises(ValidationError) as ctx:
            services.assign_students_to_room(self.students[:3], self.room_a, self.director)
        self.assertEqual(ctx.exception.code, 'room_full')
        self.assertEqual(ctx.exception.params['available'], 2)
        self.assertEqual(ctx.exception.params['required'], 3)


class EnrollmentApiTests(EnrollmentTestCase):

    def setUp(self):
        super().setUp()
        self.staff = create_user('clerk', permissions=[
            'student.view_enrollmentmodel', 'student.add_enrollmentmodel', 'student.change_enrollmentmodel',
            'student.view_studentroomassignmentmodel',
        ])
        self.client.force_login(self.staff)

    def post_json(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def test_create_and_list(self):
        response = self.post_json(reverse('enrollment_list'), self.form_data())
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['enrollment']['enrollment_number'], 'ENR-2025-00001')

        response = self.client.get(reverse('enrollment_list'), {'status': 'draft'})
        body = response.json()
        self.assertEqual(body['pagination']['total'], 1)
        self.assertEqual(body['stats']['draft'], 1)
        self.assertEqual(body['stats']['completed'], 0)

    def test_create_with_invalid_data(self):
        response = self.post_json(reverse('enrollment_list'), self.form_data(first_name=''))
        self.assertEqual(response.status_code, 400)
        self.assertIn('first_name', response.json()['errors'])

    def test_detail_with_coverage_preview(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)
        response = self.client.get(reverse('enrollment_detail', args=[enrollment.pk]), {'amount': '300000'})
        body = response.json()
        self.assertEqual(len(body['schedules']), 3)
        self.assertEqual(body['schedules'][0]['amount'], 300000.0)
        self.assertEqual(body['summary']['total_remaining'], 900000.0)
        self.assertEqual(body['coverage']['schedules_covered'][0]['percent_covered'], 100)

    def test_submit_with_payment_needs_payment_permission(self):
        enrollment = self.create_draft()
        response = self.post_json(reverse('enrollment_submit', args=[enrollment.pk]),
                                  {'payment_amount': 100000, 'payment_method': 'cash'})
        self.assertEqual(response.status_code, 403)

    def test_submit(self):
        enrollment = self.create_draft()
        response = self.post_json(reverse('enrollment_submit', args=[enrollment.pk]), {})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['enrollment']['status'], 'submitted')

    def test_approve_needs_permission(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)
        response = self.post_json(reverse('enrollment_approve', args=[enrollment.pk]), {'comment': 'ok'})
        self.assertEqual(response.status_code, 403)

    def test_cancel_submitted_refused(self):
        enrollment = services.submit_enrollment(self.create_draft(), self.user)
        response = self.post_json(reverse('enrollment_cancel', args=[enrollment.pk]), {'comment': 'Changed mind'})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()['success'])

    def test_missing_enrollment(self):
        response = self.client.get(reverse('enrollment_detail', args=[9999]))
        self.assertEqual(response.status_code, 404)

    def test_room_roster_export(self):
        room = create_room(self.grade, 'A')
        response = self.client.get(reverse('room_roster_export', args=[room.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertIn('6eme_A-Student-List.xlsx', response['Content-Disposition'])
