import json
from datetime import date
from decimal import Decimal
from unittest import mock

from django.core.exceptions import ValidationError
from django.test import TestCase
from django.urls import reverse

from admin_site.models import SubjectModel, GradeSubjectModel
from admin_site.testing import create_school_year, create_trimester, create_grade, create_user, enroll_student
from attendance.models import AttendanceRecordModel
from attendance.services import save_batch
from grading import calculations, services, report_cards
from grading.models import EvaluationModel, StudentTrimesterModel, ClassTrimesterStatsModel, TrimesterCalculationJob
from grading.tasks import calculate_trimester_results_task

D = Decimal


class CalculationTests(TestCase):

    def test_normalize_score(self):
        self.assertEqual(calculations.normalize_score(D('15'), D('30')), D('10'))
        self.assertEqual(calculations.normalize_score(D('14.5')), D('14.5'))

    def test_subject_average_weights_types(self):
        result = calculations.subject_average([
            ('interrogation', D('12'), D('20')),
            ('interrogation', D('14'), D('20')),
            ('devoir_surveille', D('10'), D('20')),
            ('composition', D('16'), D('20')),
        ])
        self.assertEqual(result['interrogation_average'], D('13.00'))
        self.assertEqual(result['devoir_average'], D('10.00'))
        self.assertEqual(result['average'], D('13.60'))

    def test_subject_average_renormalises_missing_types(self):
        result = calculations.subject_average([
            ('interrogation', D('12'), D('20')),
            ('composition', D('15'), D('20')),
        ])
        self.assertIsNone(result['devoir_average'])
        self.assertEqual(result['average'], D('14.14'))

        result = calculations.subject_average([('composition', D('30'), D('40'))])
        self.assertEqual(result['average'], D('15.00'))

    def test_subject_average_without_evaluations(self):
        result = calculations.subject_average([])
        self.assertEqual(result['average'], D('0.00'))
        self.assertIsNone(result['composition_average'])

    def test_general_average(self):
        self.assertEqual(calculations.general_average([(D('12'), 2), (D('15'), 1)]), D('13.00'))
        self.assertIsNone(calculations.general_average([]))

    def test_competition_ranking(self):
        ranks = calculations.rank({'a': D('15'), 'b': D('12'), 'c': D('15'), 'd': D('10')})
        self.assertEqual(ranks, {'a': 1, 'c': 1, 'b': 3, 'd': 4})

    def test_decisions(self):
        self.assertEqual(calculations.decision_for(D('10')), 'admis')
        self.assertEqual(calculations.decision_for(D('9.99')), 'rattrapage')
        self.assertEqual(calculations.decision_for(D('8')), 'rattrapage')
        self.assertEqual(calculations.decision_for(D('7.99')), 'redouble')
        self.assertEqual(calculations.decision_for(None), 'pending')

    def test_class_statistics(self):
        stats = calculations.class_statistics([D('12'), D('8'), D('15'), None])
        self.assertEqual(stats['total_students'], 3)
        self.assertEqual(stats['class_average'], D('11.67'))
        self.assertEqual(stats['highest_average'], D('15'))
        self.assertEqual(stats['lowest_average'], D('8'))
        self.assertEqual(stats['pass_count'], 2)
        self.assertEqual(stats['pass_rate'], D('66.67'))


class GradingTestCase(TestCase):

    def setUp(self):
        self.user = create_user('teacher')
        self.school_year = create_school_year()
        self.trimester = create_trimester(self.school_year)
        self.grade = create_grade(self.school_year)
        self.math = GradeSubjectModel.objects.create(
            grade=self.grade, subject=SubjectModel.objects.create(name='Mathematics', code='MATH'), coefficient=4
        )
        self.french = GradeSubjectModel.objects.create(
            grade=self.grade, subject=SubjectModel.objects.create(name='French', code='FR'), coefficient=2
        )
        self.aminata = enroll_student(self.grade, 'Aminata', 'Bangoura', gender='female')
        self.boubacar = enroll_student(self.grade, 'Boubacar', 'Conde')
        self.cellou = enroll_student(self.grade, 'Cellou', 'Diallo')
        self.djenabou = enroll_student(self.grade, 'Djenabou', 'Keita', gender='female')

    def record(self, grade_subject, scores, eval_type='composition', day=date(2025, 12, 10), max_score=D('20')):
        return services.record_evaluations(
            self.trimester, grade_subject, eval_type, day,
            [{'student': student, 'score': D(score)} for student, score in scores], self.user, max_score=max_score
        )

    def record_compositions(self):
        self.record(self.math, [(self.aminata, '16'), (self.boubacar, '12'), (self.cellou, '12')])
        self.record(self.french, [(self.aminata, '10'), (self.boubacar, '12'), (self.cellou, '12')])

    def result(self, student):
        return StudentTrimesterModel.objects.get(student=student, trimester=self.trimester)


class EvaluationServiceTests(GradingTestCase):

    def test_record_evaluations(self):
        created = self.record(self.math, [(self.aminata, '15'), (self.boubacar, '9.5')], eval_type='interrogation')
        self.assertEqual(len(created), 2)
        self.assertEqual(EvaluationModel.objects.filter(type='interrogation').count(), 2)

    def test_student_outside_grade_refused(self):
        other = enroll_student(create_grade(self.school_year, name='5eme'), 'Mamadou', 'Sow')
        with self.assertRaises(ValidationError) as ctx:
            self.record(self.math, [(other, '10')])
        self.assertEqual(ctx.exception.code, 'not_enrolled')
        self.assertFalse(EvaluationModel.objects.exists())

    def test_score_above_maximum_refused(self):
        with self.assertRaises(ValidationError) as ctx:
            self.record(self.math, [(self.aminata, '12'), (self.boubacar, '21')])
        self.assertEqual(ctx.exception.code, 'score_above_max')
        self.assertFalse(EvaluationModel.objects.exists())

    def test_date_outside_trimester_refused(self):
        with self.assertRaises(ValidationError) as ctx:
            self.record(self.math, [(self.aminata, '12')], day=date(2026, 1, 15))
        self.assertEqual(ctx.exception.code, 'date_outside_trimester')


class TrimesterResultsTests(GradingTestCase):

    def test_results_ranked_with_shared_ranks(self):
        self.record_compositions()
        self.assertEqual(services.calculate_grade_results(self.trimester, self.grade), 4)

        aminata, boubacar, cellou = self.result(self.aminata), self.result(self.boubacar), self.result(self.cellou)
        self.assertEqual(aminata.general_average, D('14.00'))
        self.assertEqual(boubacar.general_average, D('12.00'))
        self.assertEqual((aminata.rank, boubacar.rank, cellou.rank), (1, 2, 2))
        self.assertEqual(aminata.total_students, 3)
        self.assertEqual(aminata.decision, 'admis')

        # no evaluations: no average, no rank
        djenabou = self.result(self.djenabou)
        self.assertIsNone(djenabou.general_average)
        self.assertIsNone(djenabou.rank)
        self.assertEqual(djenabou.decision, 'pending')

        stats = ClassTrimesterStatsModel.objects.get(grade=self.grade, trimester=self.trimester)
        self.assertEqual(stats.total_students, 3)
        self.assertEqual(stats.class_average, D('12.67'))
        self.assertEqual(stats.pass_rate, D('100.00'))

    def test_decisions_follow_thresholds(self):
        self.record(self.math, [(self.aminata, '9'), (self.boubacar, '7')])
        services.calculate_grade_results(self.trimester, self.grade)
        self.assertEqual(self.result(self.aminata).decision, 'rattrapage')
        self.assertEqual(self.result(self.boubacar).decision, 'redouble')

    def test_absences_counted_inside_trimester(self):
        S = AttendanceRecordModel.Status
        for day, status in ((date(2025, 10, 6), S.ABSENT), (date(2025, 10, 7), S.LATE),
                            (date(2025, 10, 8), S.ABSENT), (date(2026, 1, 12), S.ABSENT)):
            save_batch(self.grade, day, 'checklist', [{'student': self.boubacar, 'status': status}], self.user)
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)

        boubacar = self.result(self.boubacar)
        self.assertEqual((boubacar.absences, boubacar.lates), (2, 1))
        self.assertEqual(self.result(self.aminata).absences, 0)

    def test_existing_results_skipped_unless_recalculated(self):
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)
        self.record(self.math, [(self.djenabou, '18')])

        self.assertIsNone(services.calculate_grade_results(self.trimester, self.grade))
        self.assertIsNone(self.result(self.djenabou).general_average)

        self.assertEqual(services.calculate_grade_results(self.trimester, self.grade, recalculate=True), 4)
        self.assertEqual(self.result(self.djenabou).general_average, D('18.00'))
        self.assertEqual(self.result(self.djenabou).rank, 1)

    def test_overridden_decision_survives_recalculation(self):
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)
        services.update_result(self.result(self.boubacar), self.user, conduct=D('15'), decision='redouble')

        services.calculate_grade_results(self.trimester, self.grade, recalculate=True)
        boubacar = self.result(self.boubacar)
        self.assertEqual(boubacar.decision, 'redouble')
        self.assertTrue(boubacar.decision_override)
        self.assertEqual(boubacar.conduct, D('15'))

    def test_decision_cannot_go_back_to_pending(self):
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)
        with self.assertRaises(ValidationError) as ctx:
            services.update_result(self.result(self.aminata), self.user, decision='pending')
        self.assertEqual(ctx.exception.code, 'invalid_decision')

    def test_calculation_status(self):
        self.record_compositions()
        status = services.calculation_status(self.trimester)
        self.assertEqual(status['pending_evaluations'], 6)
        self.assertTrue(status['needs_recalculation'])

        services.calculate_grade_results(self.trimester, self.grade)
        status = services.calculation_status(self.trimester)
        self.assertEqual(status['pending_evaluations'], 0)
        self.assertEqual(status['calculated_results'], 4)
        self.assertFalse(status['needs_recalculation'])


class ReportCardTests(GradingTestCase):

    def test_report_card_after_calculation(self):
        self.record(self.math, [(self.aminata, '14')], eval_type='interrogation', day=date(2025, 10, 6))
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)

        card = report_cards.build_report_card(self.aminata, self.trimester)
        self.assertEqual(card['grade'], self.grade)
        self.assertEqual([s['code'] for s in card['subjects']], ['FR', 'MATH'])
        self.assertEqual(card['total_coefficient'], 6)
        self.assertEqual(card['result'].rank, 1)
        self.assertEqual(card['class_stats'].pass_count, 3)

        maths = card['subjects'][1]
        self.assertEqual(maths['weighted_average'], maths['average'] * 4)
        self.assertEqual([e['score'] for e in maths['evaluations']['interrogation']], [D('14')])
        self.assertEqual([e['score'] for e in maths['evaluations']['composition']], [D('16')])
        self.assertEqual(maths['evaluations']['devoir_surveille'], [])

    def test_report_card_before_calculation(self):
        self.record_compositions()
        card = report_cards.build_report_card(self.boubacar, self.trimester)
        self.assertEqual(card['grade'], self.grade)
        self.assertEqual(card['subjects'], [])
        self.assertIsNone(card['result'])
        self.assertIsNone(card['class_stats'])
        self.assertTrue(report_cards.render_report_card(card).startswith(b'%PDF'))

    def test_student_not_enrolled_in_school_year(self):
        other_year = create_school_year(name='2024 - 2025', start_date=date(2024, 9, 1),
                                        end_date=date(2025, 6, 30), is_active=False)
        former = enroll_student(create_grade(other_year), 'Mamadou', 'Sow')
        with self.assertRaises(ValidationError) as ctx:
            report_cards.build_report_card(former, self.trimester)
        self.assertEqual(ctx.exception.code, 'not_enrolled')

    def test_report_card_api(self):
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)
        self.client.force_login(create_user('director', permissions=['grading.view_studenttrimestermodel']))

        body = self.client.get(reverse('report_card', args=[self.cellou.pk])).json()
        self.assertEqual(body['trimester']['number'], 1)
        self.assertEqual(body['summary']['rank'], 2)
        self.assertEqual(body['subjects'][1]['average'], 12.0)
        self.assertEqual(body['subjects'][1]['evaluations']['composition'][0]['max_score'], 20.0)
        self.assertEqual(body['class_stats']['total_students'], 3)

        response = self.client.get(reverse('report_card', args=[self.cellou.pk]), {'format': 'pdf'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertTrue(response.content.startswith(b'%PDF'))

    def test_report_card_needs_permission(self):
        self.client.force_login(create_user('parent'))
        response = self.client.get(reverse('report_card', args=[self.cellou.pk]))
        self.assertEqual(response.status_code, 403)


class ResultsJobTests(GradingTestCase):

    def create_job(self, trimester=None, recalculate=False):
        job = TrimesterCalculationJob.objects.create(trimester=trimester or self.trimester, recalculate=recalculate)
        job.grades.set([self.grade])
        return job

    def test_job_calculates_and_then_skips(self):
        self.record_compositions()
        job = self.create_job()
        calculate_trimester_results_task(str(job.job_id))
        job.refresh_from_db()
        self.assertEqual(job.status, TrimesterCalculationJob.Status.SUCCESS)
        self.assertEqual(job.processed_grades, 1)
        self.assertEqual(job.students_processed, 4)
        self.assertIsNotNone(job.completed_at)

        job = self.create_job()
        calculate_trimester_results_task(str(job.job_id))
        job.refresh_from_db()
        self.assertEqual(job.skipped_grades, 1)
        self.assertEqual(job.students_processed, 0)

    def test_failure_is_recorded(self):
        next_year = create_school_year(name='2026 - 2027', start_date=date(2026, 9, 1), end_date=date(2027, 6, 30),
                                       is_active=False)
        job = self.create_job(trimester=create_trimester(next_year, start_date=date(2026, 9, 1),
                                                         end_date=date(2026, 12, 20)))
        calculate_trimester_results_task(str(job.job_id))
        job.refresh_from_db()
        self.assertEqual(job.status, TrimesterCalculationJob.Status.FAILURE)
        self.assertIn('school year', job.error_message)
        self.assertIsNotNone(job.completed_at)


class GradingApiTests(GradingTestCase):

    def setUp(self):
        super().setUp()
        self.staff = create_user('academic', permissions=[
            'grading.view_evaluationmodel', 'grading.add_evaluationmodel',
            'grading.view_studenttrimestermodel', 'grading.change_studenttrimestermodel',
            'grading.add_trimestercalculationjob', 'grading.view_trimestercalculationjob',
        ])
        self.client.force_login(self.staff)

    def send_json(self, url, data, method='post'):
        return getattr(self.client, method)(url, data=json.dumps(data), content_type='application/json')

    def test_bulk_evaluations(self):
        response = self.send_json(reverse('evaluation_list'), {
            'trimester': self.trimester.pk, 'grade_subject': self.math.pk, 'type': 'devoir_surveille',
            'evaluation_date': '2025-11-03', 'max_score': 40,
            'scores': [{'student': self.aminata.pk, 'score': 32}, {'student': self.boubacar.pk, 'score': 18.5}],
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['count'], 2)

        body = self.client.get(reverse('evaluation_list'), {'grade': self.grade.pk}).json()
        self.assertEqual(body['pagination']['total'], 2)
        self.assertEqual(body['evaluations'][0]['max_score'], 40.0)

    def test_bulk_evaluations_validation(self):
        response = self.send_json(reverse('evaluation_list'), {
            'trimester': self.trimester.pk, 'grade_subject': self.math.pk, 'type': 'composition',
            'evaluation_date': '2025-12-10', 'scores': [{'student': self.aminata.pk, 'score': 25}],
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['max_score'], 20.0)

    def test_results_and_override(self):
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)

        body = self.client.get(reverse('trimester_results', args=[self.grade.pk])).json()
        self.assertEqual([r['rank'] for r in body['results']], [1, 2, 2, None])
        self.assertEqual(body['class_stats']['pass_count'], 3)

        result = self.result(self.cellou)
        response = self.send_json(reverse('student_result', args=[result.pk]),
                                  {'decision': 'rattrapage', 'remarks': 'Needs to resit French'}, method='patch')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['result']['decision_override'])

        body = self.client.get(reverse('student_result', args=[result.pk])).json()
        self.assertEqual(len(body['subjects']), 2)

    def test_start_calculation_job(self):
        with mock.patch('grading.views.calculate_trimester_results_task.delay') as delay:
            with self.captureOnCommitCallbacks(execute=True):
                response = self.send_json(reverse('results_calculation'), {
                    'trimester': self.trimester.pk, 'grades': [self.grade.pk], 'recalculate': True,
                })
        self.assertEqual(response.status_code, 202)
        job_id = response.json()['job']['job_id']
        delay.assert_called_once_with(job_id)

        body = self.client.get(reverse('results_job_status', args=[job_id])).json()
        self.assertEqual(body['status'], 'pending')
        self.assertEqual(body['total_grades'], 1)

    def test_start_calculation_rejects_other_year_grade(self):
        other_year = create_school_year(name='2024 - 2025', start_date=date(2024, 9, 1),
                                        end_date=date(2025, 6, 30), is_active=False)
        other_grade = create_grade(other_year)
        response = self.send_json(reverse('results_calculation'), {
            'trimester': self.trimester.pk, 'grades': [other_grade.pk],
        })
        self.assertEqual(response.status_code, 400)

    def test_export(self):
        self.record_compositions()
        services.calculate_grade_results(self.trimester, self.grade)
        response = self.client.get(reverse('trimester_results_export', args=[self.grade.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'],
                         'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet')
        self.assertIn('6eme-Trimester_1-results.xlsx', response['Content-Disposition'])
