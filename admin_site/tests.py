import json
from datetime import date, time
from io import StringIO

from django.contrib.auth.models import Group
from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import TestCase
from django.urls import reverse

from admin_site.forms import SchoolYearForm, TrimesterForm, TimePeriodForm, ScheduleSlotForm
from admin_site.models import SchoolYearModel, TrimesterModel, ActivityLogModel, SubjectModel, GradeSubjectModel, \
    TimePeriodModel, ScheduleSlotModel, school_year_name_for, get_active_school_year, get_active_trimester
from admin_site.timetable import find_slot_conflicts, save_schedule_slot, weekly_schedule
from admin_site.testing import create_school_year, create_trimester, create_grade, create_room, create_user, \
    enroll_student


class SchoolYearTests(TestCase):

    def test_school_year_name_for(self):
        self.assertEqual(school_year_name_for(date(2025, 9, 1)), '2025 - 2026')
        self.assertEqual(school_year_name_for(date(2026, 6, 30)), '2025 - 2026')
        self.assertEqual(school_year_name_for(date(2026, 8, 31)), '2025 - 2026')

    def test_only_one_active_school_year(self):
        current = create_school_year()
        following = create_school_year(name='2026 - 2027', start_date=date(2026, 9, 1), end_date=date(2027, 6, 30),
                                       is_active=False)
        following.activate()
        current.refresh_from_db()
        self.assertFalse(current.is_active)
        self.assertEqual(get_active_school_year(), following)

    def test_only_one_active_trimester_per_year(self):
        school_year = create_school_year()
        first = create_trimester(school_year, 1)
        second = create_trimester(school_year, 2, start_date=date(2026, 1, 5), end_date=date(2026, 3, 31),
                                  is_active=False)
        other_year = create_school_year(name='2024 - 2025', start_date=date(2024, 9, 1), end_date=date(2025, 6, 30),
                                        is_active=False)
        other = create_trimester(other_year, 3, start_date=date(2025, 4, 1), end_date=date(2025, 6, 30))

        second.activate()
        first.refresh_from_db()
        other.refresh_from_db()
        self.assertFalse(first.is_active)
        self.assertTrue(other.is_active)
        self.assertEqual(get_active_trimester(), second)

    def test_enrollment_period(self):
        school_year = create_school_year(enrollment_start=date(2025, 7, 1), enrollment_end=date(2025, 10, 31))
        self.assertTrue(school_year.is_within_enrollment_period(date(2025, 9, 15)))
        self.assertFalse(school_year.is_within_enrollment_period(date(2025, 11, 1)))

    def test_activity_log_defaults_to_active_year(self):
        school_year = create_school_year()
        log = ActivityLogModel.objects.create(category='test', log='Something happened')
        self.assertEqual(log.school_year, school_year)


class FormTests(TestCase):

    def test_school_year_name_derived_from_start(self):
        form = SchoolYearForm({'start_date': '2025-09-01', 'end_date': '2026-06-30'})
        self.assertTrue(form.is_valid(), form.errors)
        self.assertEqual(form.save().name, '2025 - 2026')

    def test_school_year_dates_checked(self):
        form = SchoolYearForm({'start_date': '2025-09-01', 'end_date': '2025-08-01'})
        self.assertFalse(form.is_valid())

    def test_trimester_must_fit_school_year(self):
        school_year = create_school_year()
        form = TrimesterForm({'school_year': school_year.pk, 'number': 1, 'name': 'Trimester 1',
                              'start_date': '2025-08-01', 'end_date': '2025-12-20'})
        self.assertFalse(form.is_valid())

        form = TrimesterForm({'school_year': school_year.pk, 'number': 4, 'name': 'Trimester 4',
                              'start_date': '2025-09-01', 'end_date': '2025-12-20'})
        self.assertIn('number', form.errors)


class SchoolApiTests(TestCase):

    def setUp(self):
        self.user = create_user('director', permissions=[
            'admin_site.view_schoolyearmodel', 'admin_site.add_schoolyearmodel',
            'admin_site.change_schoolyearmodel', 'admin_site.view_trimestermodel',
            'admin_site.change_trimestermodel', 'admin_site.view_grademodel',
        ])
        self.client.force_login(self.user)

    def post_json(self, url, data=None):
        return self.client.post(url, data=json.dumps(data or {}), content_type='application/json')

    def test_create_and_activate_school_year(self):
        current = create_school_year()
        response = self.post_json(reverse('school_year_list'), {
            'start_date': '2026-09-01', 'end_date': '2027-06-30', 'is_active': True,
        })
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.json()['school_year']['is_active'])
        current.refresh_from_db()
        self.assertFalse(current.is_active)
        self.assertEqual(SchoolYearModel.objects.filter(is_active=True).count(), 1)

    def test_activate_trimester(self):
        school_year = create_school_year()
        create_trimester(school_year, 1)
        second = create_trimester(school_year, 2, start_date=date(2026, 1, 5), end_date=date(2026, 3, 31),
                                  is_active=False)
        response = self.post_json(reverse('trimester_activate', args=[second.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(TrimesterModel.objects.get(is_active=True), second)

    def test_grades_with_occupancy(self):
        grade = create_grade(create_school_year())
        create_room(grade, 'A')
        enroll_student(grade, 'Fatoumata', 'Barry', gender='female')
        body = self.client.get(reverse('grade_list')).json()
        self.assertEqual(body['grades'][0]['enrolled'], 1)
        self.assertEqual(body['grades'][0]['rooms'][0]['display_name'], '6eme A')

    def test_login_and_permission_required(self):
        self.client.logout()
        self.assertEqual(self.client.get(reverse('school_year_list')).status_code, 403)
        self.client.force_login(create_user('guest'))
        self.assertEqual(self.client.get(reverse('school_year_list')).status_code, 403)


class TimetableTestCase(TestCase):

    def setUp(self):
        self.school_year = create_school_year()
        self.grade = create_grade(self.school_year)
        self.room_a = create_room(self.grade, 'A')
        self.room_b = create_room(self.grade, 'B')
        self.first = TimePeriodModel.objects.create(school_year=self.school_year, name='P1', order=1,
                                                    start_time=time(8, 0), end_time=time(9, 0))
        self.second = TimePeriodModel.objects.create(school_year=self.school_year, name='P2', order=2,
                                                     start_time=time(9, 0), end_time=time(10, 0))
        self.maths = GradeSubjectModel.objects.create(
            grade=self.grade, subject=SubjectModel.objects.create(name='Mathematics', code='MATH'), coefficient=4
        )
        self.french = GradeSubjectModel.objects.create(
            grade=self.grade, subject=SubjectModel.objects.create(name='French', code='FR'), coefficient=3
        )
        self.teacher = create_user('mr_bah', first_name='Ousmane', last_name='Bah')

    def slot(self, room, period, day=ScheduleSlotModel.Day.MONDAY, **kwargs):
        kwargs.setdefault('grade_subject', self.maths)
        return ScheduleSlotModel.objects.create(room=room, time_period=period, day_of_week=day, **kwargs)


class TimePeriodTests(TimetableTestCase):

    def test_overlapping_period_refused(self):
        form = TimePeriodForm({'school_year': self.school_year.pk, 'name': 'P3', 'order': 3,
                               'start_time': '09:30', 'end_time': '10:30'})
        self.assertFalse(form.is_valid())
        self.assertIn('overlaps P2', str(form.errors))

    def test_adjacent_period_accepted(self):
        form = TimePeriodForm({'school_year': self.school_year.pk, 'name': 'P3', 'order': 3,
                               'start_time': '10:00', 'end_time': '11:00'})
        self.assertTrue(form.is_valid(), form.errors)

    def test_start_before_end(self):
        form = TimePeriodForm({'school_year': self.school_year.pk, 'name': 'P3', 'order': 3,
                               'start_time': '12:00', 'end_time': '11:00'})
        self.assertFalse(form.is_valid())

    def test_order_unique_per_year(self):
        form = TimePeriodForm({'school_year': self.school_year.pk, 'name': 'P3', 'order': 2,
                               'start_time': '10:00', 'end_time': '11:00'})
        self.assertFalse(form.is_valid())

    def test_period_can_be_moved_within_its_own_time(self):
        form = TimePeriodForm({'school_year': self.school_year.pk, 'name': 'P2', 'order': 2,
                               'start_time': '09:00', 'end_time': '09:55'}, instance=self.second)
        self.assertTrue(form.is_valid(), form.errors)


class ScheduleSlotTests(TimetableTestCase):

    def test_teacher_cannot_be_in_two_rooms(self):
        self.slot(self.room_a, self.first, teacher=self.teacher)
        conflicts = find_slot_conflicts(self.room_b, self.first, ScheduleSlotModel.Day.MONDAY, teacher=self.teacher)
        self.assertEqual([c['type'] for c in conflicts], ['teacher'])
        self.assertIn('6eme A', conflicts[0]['details'])

        other_day = find_slot_conflicts(self.room_b, self.first, ScheduleSlotModel.Day.TUESDAY, teacher=self.teacher)
        self.assertEqual(other_day, [])

    def test_classroom_cannot_host_two_lessons(self):
        self.slot(self.room_a, self.first, room_location='B12')
        conflicts = find_slot_conflicts(self.room_b, self.first, ScheduleSlotModel.Day.MONDAY, room_location='b12')
        self.assertEqual([c['type'] for c in conflicts], ['room'])

    def test_breaks_do_not_block_teacher_or_classroom(self):
        self.slot(self.room_a, self.first, teacher=self.teacher, room_location='B12', is_break=True,
                  grade_subject=None)
        conflicts = find_slot_conflicts(self.room_b, self.first, ScheduleSlotModel.Day.MONDAY,
                                        teacher=self.teacher, room_location='B12')
        self.assertEqual(conflicts, [])

    def test_room_has_one_slot_per_cell(self):
        existing = self.slot(self.room_a, self.first)
        conflicts = find_slot_conflicts(self.room_a, self.first, ScheduleSlotModel.Day.MONDAY, is_break=True)
        self.assertEqual([c['type'] for c in conflicts], ['section'])
        self.assertEqual(find_slot_conflicts(self.room_a, self.first, ScheduleSlotModel.Day.MONDAY,
                                             exclude_pk=existing.pk), [])

    def test_save_refuses_conflicts(self):
        self.slot(self.room_a, self.first, teacher=self.teacher)
        form = ScheduleSlotForm({'room': self.room_b.pk, 'time_period': self.first.pk, 'day_of_week': 1,
                                 'grade_subject': self.french.pk, 'teacher': self.teacher.pk})
        self.assertTrue(form.is_valid(), form.errors)
        with self.assertRaises(ValidationError) as ctx:
            save_schedule_slot(form)
        self.assertEqual(ctx.exception.code, 'schedule_conflict')
        self.assertEqual(ScheduleSlotModel.objects.count(), 1)

    def test_lesson_needs_subject_of_its_grade(self):
        form = ScheduleSlotForm({'room': self.room_a.pk, 'time_period': self.first.pk, 'day_of_week': 1})
        self.assertIn('grade_subject', form.errors)

        other_grade = create_grade(self.school_year, name='5eme')
        physics = GradeSubjectModel.objects.create(grade=other_grade,
                                                   subject=SubjectModel.objects.create(name='Physics'))
        form = ScheduleSlotForm({'room': self.room_a.pk, 'time_period': self.first.pk, 'day_of_week': 1,
                                 'grade_subject': physics.pk})
        self.assertIn('grade_subject', form.errors)

    def test_weekly_schedule(self):
        self.slot(self.room_a, self.second, day=ScheduleSlotModel.Day.WEDNESDAY)
        periods, week = weekly_schedule(self.room_a)
        self.assertEqual(periods, [self.first, self.second])
        self.assertEqual(len(week), 6)
        wednesday = week[2]
        self.assertEqual(wednesday['day'], ScheduleSlotModel.Day.WEDNESDAY)
        self.assertIsNone(wednesday['periods'][0][1])
        self.assertEqual(wednesday['periods'][1][1].grade_subject, self.maths)


class TimetableApiTests(TimetableTestCase):

    def setUp(self):
        super().setUp()
        self.user = create_user('planner', permissions=[
            'admin_site.view_timeperiodmodel', 'admin_site.add_timeperiodmodel', 'admin_site.change_timeperiodmodel',
            'admin_site.delete_timeperiodmodel', 'admin_site.view_scheduleslotmodel',
            'admin_site.add_scheduleslotmodel', 'admin_site.change_scheduleslotmodel',
            'admin_site.delete_scheduleslotmodel',
        ])
        self.client.force_login(self.user)

    def post_json(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def patch_json(self, url, data):
        return self.client.patch(url, data=json.dumps(data), content_type='application/json')

    def test_list_periods_of_active_year(self):
        body = self.client.get(reverse('time_period_list')).json()
        self.assertEqual([p['name'] for p in body['time_periods']], ['P1', 'P2'])
        self.assertEqual(body['time_periods'][0]['start_time'], '08:00')

    def test_edit_period(self):
        response = self.patch_json(reverse('time_period_detail', args=[self.second.pk]), {'end_time': '09:50'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['time_period']['end_time'], '09:50')
        self.assertEqual(response.json()['time_period']['name'], 'P2')

    def test_delete_period_removes_its_slots(self):
        self.slot(self.room_a, self.first)
        response = self.client.delete(reverse('time_period_detail', args=[self.first.pk]))
        self.assertEqual(response.json()['deleted_schedule_slots'], 1)
        self.assertFalse(ScheduleSlotModel.objects.exists())

    def test_create_slot_and_report_conflicts(self):
        response = self.post_json(reverse('schedule_slot_list'), {
            'room': self.room_a.pk, 'time_period': self.first.pk, 'day_of_week': 1,
            'grade_subject': self.maths.pk, 'teacher': self.teacher.pk, 'room_location': 'B12',
        })
        self.assertEqual(response.status_code, 201)
        slot = response.json()['schedule_slot']
        self.assertEqual(slot['subject']['code'], 'MATH')
        self.assertEqual(slot['teacher']['name'], 'Ousmane Bah')
        self.assertEqual(slot['day_name'], 'Monday')

        response = self.post_json(reverse('schedule_slot_list'), {
            'room': self.room_b.pk, 'time_period': self.first.pk, 'day_of_week': 1,
            'grade_subject': self.french.pk, 'teacher': self.teacher.pk, 'room_location': 'B12',
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual({c['type'] for c in response.json()['conflicts']}, {'teacher', 'room'})

    def test_move_slot(self):
        slot = self.slot(self.room_a, self.first, teacher=self.teacher)
        self.slot(self.room_b, self.second, teacher=self.teacher)

        response = self.patch_json(reverse('schedule_slot_detail', args=[slot.pk]), {'time_period': self.second.pk})
        self.assertEqual(response.status_code, 400)

        response = self.patch_json(reverse('schedule_slot_detail', args=[slot.pk]), {'day_of_week': 5})
        self.assertEqual(response.status_code, 200)
        slot.refresh_from_db()
        self.assertEqual(slot.day_of_week, ScheduleSlotModel.Day.FRIDAY)
        self.assertEqual(slot.teacher, self.teacher)

    def test_room_timetable(self):
        self.slot(self.room_a, self.first, day=ScheduleSlotModel.Day.TUESDAY)
        body = self.client.get(reverse('room_timetable', args=[self.room_a.pk])).json()
        self.assertEqual(body['room']['display_name'], '6eme A')
        tuesday = body['weekly_schedule'][1]
        self.assertEqual(tuesday['day_name'], 'Tuesday')
        self.assertEqual(tuesday['periods'][0]['slot']['subject']['name'], 'Mathematics')
        self.assertIsNone(tuesday['periods'][1]['slot'])


class SetupRolesCommandTests(TestCase):

    def test_creates_groups(self):
        out = StringIO()
        call_command('setup_roles', stdout=out)
        self.assertIn('Created group Director', out.getvalue())
        self.assertEqual(Group.objects.count(), 4)

        accountant = Group.objects.get(name='Accountant')
        self.assertTrue(accountant.permissions.filter(codename='operate_registry').exists())
        teacher = Group.objects.get(name='Teacher')
        self.assertTrue(teacher.permissions.filter(codename='add_evaluationmodel').exists())
        self.assertFalse(teacher.permissions.filter(content_type__app_label='finance').exists())

        out = StringIO()
        call_command('setup_roles', '--reset', stdout=out)
        self.assertIn('Updated group Teacher', out.getvalue())
