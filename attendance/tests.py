import json
from datetime import date

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse

from admin_site.testing import create_school_year, create_grade, create_user, enroll_student
from attendance import services
from attendance.models import AttendanceSessionModel, AttendanceRecordModel

S = AttendanceRecordModel.Status
M = AttendanceSessionModel.EntryMode


class StatusCyclingTests(TestCase):

    def test_checklist_cycle(self):
        self.assertEqual(services.next_status(None, M.CHECKLIST), S.PRESENT)
        self.assertEqual(services.next_status(S.PRESENT, M.CHECKLIST), S.ABSENT)
        self.assertEqual(services.next_status(S.ABSENT, M.CHECKLIST), S.LATE)
        self.assertEqual(services.next_status(S.LATE, M.CHECKLIST), S.EXCUSED)
        self.assertEqual(services.next_status(S.EXCUSED, M.CHECKLIST), S.PRESENT)

    def test_absences_only_cycle(self):
        self.assertEqual(services.next_status(None, M.ABSENCES_ONLY), S.ABSENT)
        self.assertEqual(services.next_status(S.ABSENT, M.ABSENCES_ONLY), S.LATE)
        self.assertEqual(services.next_status(S.LATE, M.ABSENCES_ONLY), S.EXCUSED)
        self.assertIsNone(services.next_status(S.EXCUSED, M.ABSENCES_ONLY))

    def test_attendance_rate(self):
        self.assertEqual(services.attendance_rate({'present': 5, 'late': 1, 'excused': 1, 'absent': 2}), 78)
        self.assertEqual(services.attendance_rate({'present': 0, 'absent': 0}), 0)
        self.assertEqual(services.attendance_rate({'absent': 3}), 0)

    def test_attendance_rate_rounds_halves_up(self):
        self.assertEqual(services.attendance_rate({'present': 5, 'absent': 3}), 63)
        self.assertEqual(services.attendance_rate({'present': 1, 'late': 0, 'absent': 7}), 13)


class AttendanceTestCase(TestCase):

    def setUp(self):
        self.user = create_user('teacher')
        self.school_year = create_school_year()
        self.grade = create_grade(self.school_year)
        self.alpha = enroll_student(self.grade, 'Alpha', 'Bah')
        self.hawa = enroll_student(self.grade, 'Hawa', 'Camara', gender='female')
        self.sekou = enroll_student(self.grade, 'Sekou', 'Diallo')
        self.day = date(2025, 10, 6)

    def statuses(self, session):
        return dict(session.records.values_list('student_id', 'status'))


class AttendanceServiceTests(AttendanceTestCase):

    def test_create_session_once_per_grade_and_day(self):
        services.create_session(self.grade, self.day, M.CHECKLIST, self.user)
        with self.assertRaises(ValidationError) as ctx:
            services.create_session(self.grade, self.day, M.ABSENCES_ONLY, self.user)
        self.assertEqual(ctx.exception.code, 'session_exists')

    def test_checklist_batch_upserts_records(self):
        records = [
            {'student': self.alpha, 'status': S.PRESENT},
            {'student': self.hawa, 'status': S.ABSENT, 'notes': 'Sick'},
        ]
        session = services.save_batch(self.grade, self.day, M.CHECKLIST, records, self.user)
        self.assertFalse(session.is_complete)
        self.assertEqual(self.statuses(session), {self.alpha.id: 'present', self.hawa.id: 'absent'})

        session = services.save_batch(self.grade, self.day, M.CHECKLIST,
                                      [{'student': self.hawa, 'status': S.LATE}], self.user, is_complete=True)
        self.assertTrue(session.is_complete)
        self.assertIsNotNone(session.completed_at)
        self.assertEqual(AttendanceSessionModel.objects.count(), 1)
        self.assertEqual(self.statuses(session)[self.hawa.id], 'late')
        # checklist completion does not fill the students left out
        self.assertNotIn(self.sekou.id, self.statuses(session))

    def test_completed_absences_only_session_marks_others_present(self):
        session = services.save_batch(self.grade, self.day, M.ABSENCES_ONLY,
                                      [{'student': self.hawa, 'status': S.ABSENT}], self.user)
        self.assertEqual(session.records.count(), 1)

        session = services.save_batch(self.grade, self.day, M.ABSENCES_ONLY,
                                      [{'student': self.hawa, 'status': S.ABSENT}], self.user, is_complete=True)
        self.assertEqual(self.statuses(session), {
            self.alpha.id: 'present', self.hawa.id: 'absent', self.sekou.id: 'present',
        })

    def test_roll_call(self):
        roll_call = services.grade_roll_call(self.grade, self.day)
        self.assertIsNone(roll_call['session'])
        self.assertEqual(roll_call['summary']['not_recorded'], 3)

        services.save_batch(self.grade, self.day, M.CHECKLIST,
                            [{'student': self.sekou, 'status': S.EXCUSED}], self.user)
        roll_call = services.grade_roll_call(self.grade, self.day)
        self.assertEqual([row['student'].last_name for row in roll_call['students']], ['Bah', 'Camara', 'Diallo'])
        self.assertEqual(roll_call['summary'], {
            'total': 3, 'present': 0, 'absent': 0, 'late': 0, 'excused': 1, 'not_recorded': 2,
        })

    def test_grade_stats(self):
        services.save_batch(self.grade, date(2025, 10, 6), M.ABSENCES_ONLY,
                            [{'student': self.hawa, 'status': S.ABSENT}], self.user, is_complete=True)
        services.save_batch(self.grade, date(2025, 10, 7), M.CHECKLIST, [
            {'student': self.alpha, 'status': S.PRESENT},
            {'student': self.hawa, 'status': S.ABSENT},
            {'student': self.sekou, 'status': S.LATE},
        ], self.user)

        stats = services.grade_stats(self.grade)
        self.assertEqual(stats['summary']['total'], 6)
        self.assertEqual(stats['summary']['absent'], 2)
        self.assertEqual(stats['summary']['attendance_rate'], 67)
        self.assertEqual(stats['sessions_count'], 2)
        self.assertEqual(stats['completed_sessions'], 1)
        self.assertEqual(stats['daily_breakdown'][0]['date'], date(2025, 10, 7))
        self.assertEqual(stats['daily_breakdown'][0]['late'], 1)
        self.assertEqual(stats['daily_breakdown'][0]['total'], 3)
        self.assertEqual(stats['top_absences'][0]['student_id'], self.hawa.id)
        self.assertEqual(stats['top_absences'][0]['absence_count'], 2)

        stats = services.grade_stats(self.grade, start_date=date(2025, 10, 7))
        self.assertEqual(stats['sessions_count'], 1)

    def test_student_stats_and_absence_counts(self):
        for day, status in ((date(2025, 10, 6), S.ABSENT), (date(2025, 10, 7), S.LATE),
                            (date(2025, 10, 8), S.PRESENT), (date(2026, 1, 12), S.ABSENT)):
            services.save_batch(self.grade, day, M.CHECKLIST, [{'student': self.hawa, 'status': status}], self.user)

        summary = services.student_stats(self.hawa)
        self.assertEqual(summary['total'], 4)
        self.assertEqual(summary['absent'], 2)
        self.assertEqual(summary['attendance_rate'], 50)

        counts = services.absence_counts([self.hawa, self.alpha], date(2025, 9, 1), date(2025, 12, 20))
        self.assertEqual(counts, {self.hawa.id: (1, 1)})

    def test_student_stats_count_every_day(self):
        for day in (date(2025, 10, 6), date(2025, 10, 7), date(2025, 10, 8)):
            services.save_batch(self.grade, day, M.CHECKLIST, [{'student': self.sekou, 'status': S.ABSENT}], self.user)
        services.save_batch(self.grade, date(2025, 10, 9), M.CHECKLIST,
                            [{'student': self.sekou, 'status': S.PRESENT}], self.user)

        summary = services.student_stats(self.sekou)
        self.assertEqual(summary['absent'], 3)
        self.assertEqual(summary['present'], 1)
        self.assertEqual(summary['total'], 4)
        self.assertEqual(summary['attendance_rate'], 25)


class AttendanceApiTests(AttendanceTestCase):

    def setUp(self):
        super().setUp()
        self.teacher = create_user('roll_caller', permissions=[
            'attendance.view_attendancesessionmodel', 'attendance.add_attendancesessionmodel',
            'attendance.add_attendancerecordmodel', 'attendance.view_attendancerecordmodel',
        ])
        self.client.force_login(self.teacher)
        self.url = reverse('grade_attendance', args=[self.grade.pk, '2025-10-06'])

    def post_json(self, url, data, method='post'):
        return getattr(self.client, method)(url, data=json.dumps(data), content_type='application/json')

    def test_batch_save_and_read_back(self):
        response = self.post_json(self.url, {
            'entry_mode': 'absences_only',
            'records': [{'student': self.hawa.id, 'status': 'absent', 'notes': 'Fever'}],
            'is_complete': True,
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['summary']['present'], 2)

        body = self.client.get(self.url).json()
        self.assertTrue(body['session']['is_complete'])
        self.assertEqual(body['summary']['absent'], 1)
        self.assertEqual(body['summary']['not_recorded'], 0)
        hawa = next(row for row in body['students'] if row['id'] == self.hawa.id)
        self.assertEqual(hawa['notes'], 'Fever')

    def test_batch_rejects_students_outside_grade(self):
        other_grade = create_grade(self.school_year, name='5eme')
        outsider = enroll_student(other_grade, 'Mamadou', 'Sow')
        response = self.post_json(self.url, {
            'entry_mode': 'checklist', 'records': [{'student': outsider.id, 'status': 'present'}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('records', response.json()['errors'])

    def test_invalid_date(self):
        response = self.client.get(reverse('grade_attendance', args=[self.grade.pk, '2025-13-45']))
        self.assertEqual(response.status_code, 400)

    def test_duplicate_session(self):
        data = {'grade': self.grade.pk, 'date': '2025-10-06', 'entry_mode': 'checklist'}
        self.assertEqual(self.post_json(reverse('attendance_session_list'), data).status_code, 201)
        response = self.post_json(reverse('attendance_session_list'), data)
        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.json()['success'])

    def test_stats_and_student_history(self):
        services.save_batch(self.grade, self.day, M.CHECKLIST, [{'student': self.alpha, 'status': S.LATE}],
                            self.user)
        body = self.client.get(reverse('grade_attendance_stats', args=[self.grade.pk])).json()
        self.assertEqual(body['summary']['late'], 1)

        body = self.client.get(reverse('student_attendance', args=[self.alpha.student_number])).json()
        self.assertEqual(body['summary']['attendance_rate'], 100)
        self.assertEqual(body['records'][0]['status'], 'late')

    def test_correction_needs_permission(self):
        session = services.create_session(self.grade, self.day, M.CHECKLIST, self.user)
        response = self.post_json(reverse('student_attendance', args=[self.alpha.pk]),
                                  {'session': session.pk, 'status': 'excused'}, method='patch')
        self.assertEqual(response.status_code, 403)

        director = create_user('director', permissions=['attendance.change_attendancerecordmodel'])
        self.client.force_login(director)
        response = self.post_json(reverse('student_attendance', args=[self.alpha.pk]),
                                  {'session': session.pk, 'status': 'excused'}, method='patch')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['record']['status'], 'excused')
