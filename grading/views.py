import logging

import openpyxl
from django.db import transaction
from django.db.models import F
from django.http import JsonResponse, HttpResponse, Http404
from django.shortcuts import get_object_or_404
from openpyxl.styles import Font

from admin_site.models import GradeModel, TrimesterModel, get_active_trimester
from admin_site.views import ApiView, as_number
from student.models import StudentModel
from .forms import EvaluationBulkForm, EvaluationUpdateForm, ResultsCalculationForm, StudentResultForm
from .models import EvaluationModel, StudentTrimesterModel, ClassTrimesterStatsModel, TrimesterCalculationJob, \
    SubjectTrimesterAverageModel
from .tasks import calculate_trimester_results_task
from . import services, report_cards

logger = logging.getLogger(__name__)


def serialize_evaluation(evaluation):
    return {
        'id': evaluation.id,
        'student_id': evaluation.student_id,
        'student': str(evaluation.student),
        'grade_subject_id': evaluation.grade_subject_id,
        'subject': evaluation.grade_subject.subject.name,
        'trimester_id': evaluation.trimester_id,
        'type': evaluation.type,
        'score': as_number(evaluation.score),
        'max_score': as_number(evaluation.max_score),
        'evaluation_date': evaluation.evaluation_date,
        'notes': evaluation.notes,
    }


def serialize_result(result):
    return {
        'id': result.id,
        'student_id': result.student_id,
        'student_number': result.student.student_number,
        'first_name': result.student.first_name,
        'last_name': result.student.last_name,
        'grade_id': result.grade_id,
        'trimester_id': result.trimester_id,
        'general_average': as_number(result.general_average),
        'rank': result.rank,
        'total_students': result.total_students,
        'conduct': as_number(result.conduct),
        'decision': result.decision,
        'decision_override': result.decision_override,
        'absences': result.absences,
        'lates': result.lates,
        'remarks': result.remarks,
        'calculated_at': result.calculated_at,
    }


def serialize_job(job):
    return {
        'job_id': str(job.job_id),
        'trimester_id': job.trimester_id,
        'status': job.status,
        'status_display': job.get_status_display(),
        'recalculate': job.recalculate,
        'total_grades': job.total_grades,
        'processed_grades': job.processed_grades,
        'skipped_grades': job.skipped_grades,
        'students_processed': job.students_processed,
        'error_message': job.error_message,
        'is_complete': job.is_complete,
        'created_at': job.created_at,
        'completed_at': job.completed_at,
    }


def _trimester(request):
    trimester_id = request.GET.get('trimester')
    if trimester_id:
        return get_object_or_404(TrimesterModel, pk=trimester_id)
    trimester = get_active_trimester()
    if trimester is None:
        raise Http404("No active trimester")
    return trimester


class EvaluationListView(ApiView):
    method_permissions = {
        'GET': 'grading.view_evaluationmodel',
        'POST': 'grading.add_evaluationmodel',
    }

    def get(self, request, *args, **kwargs):
        queryset = EvaluationModel.objects.select_related('student', 'grade_subject__subject')
        for param, lookup in (('trimester', 'trimester_id'), ('grade', 'grade_subject__grade_id'),
                              ('grade_subject', 'grade_subject_id'), ('student', 'student_id'), ('type', 'type')):
            value = request.GET.get(param)
            if value:
                queryset = queryset.filter(**{lookup: value})
        evaluations, meta = self.paginate(queryset, default_limit=100, max_limit=500)
        return JsonResponse({'evaluations': [serialize_evaluation(e) for e in evaluations], 'pagination': meta})

    def post(self, request, *args, **kwargs):
        form = EvaluationBulkForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        data = form.cleaned_data
        evaluations = services.record_evaluations(
            data['trimester'], data['grade_subject'], data['type'], data['evaluation_date'], data['scores'],
            request.user, max_score=data['max_score'],
        )
        return JsonResponse({
            'success': True,
            'message': f"{len(evaluations)} score(s) recorded.",
            'count': len(evaluations),
        }, status=201)


class EvaluationDetailView(ApiView):
    method_permissions = {
        'PATCH': 'grading.change_evaluationmodel',
        'DELETE': 'grading.delete_evaluationmodel',
    }

    def patch(self, request, *args, **kwargs):
        evaluation = get_object_or_404(EvaluationModel, pk=self.kwargs['pk'])
        data = {
            'score': evaluation.score, 'max_score': evaluation.max_score,
            'evaluation_date': evaluation.evaluation_date, 'notes': evaluation.notes,
            **self.get_json(),
        }
        form = EvaluationUpdateForm(data, instance=evaluation)
        if not form.is_valid():
            return self.form_invalid(form)
        evaluation = form.save()
        logger.info(f"{request.user.username} updated evaluation {evaluation.id}")
        return JsonResponse({'success': True, 'evaluation': serialize_evaluation(evaluation)})

    def delete(self, request, *args, **kwargs):
        evaluation = get_object_or_404(EvaluationModel, pk=self.kwargs['pk'])
        evaluation.delete()
        logger.info(f"{request.user.username} deleted evaluation {self.kwargs['pk']}")
        return JsonResponse({'success': True, 'message': 'Evaluation deleted.'})


class TrimesterResultsView(ApiView):
    """Ranked results of a grade for a trimester, with the class statistics."""
    permission_required = 'grading.view_studenttrimestermodel'

    def get(self, request, *args, **kwargs):
        grade = get_object_or_404(GradeModel, pk=self.kwargs['grade_id'])
        trimester = _trimester(request)
        results = StudentTrimesterModel.objects.filter(
            grade=grade, trimester=trimester
        ).select_related('student').order_by(F('rank').asc(nulls_last=True), 'student__last_name')
        stats = ClassTrimesterStatsModel.objects.filter(grade=grade, trimester=trimester).first()
        return JsonResponse({
            'grade': {'id': grade.id, 'name': grade.name},
            'trimester': {'id': trimester.id, 'name': trimester.name},
            'results': [serialize_result(r) for r in results],
            'class_stats': {
                'total_students': stats.total_students,
                'class_average': as_number(stats.class_average),
                'highest_average': as_number(stats.highest_average),
                'lowest_average': as_number(stats.lowest_average),
                'pass_count': stats.pass_count,
                'pass_rate': as_number(stats.pass_rate),
            } if stats else None,
        })


class StudentResultView(ApiView):
    """One student's trimester result with the subject averages behind it."""
    method_permissions = {
        'GET': 'grading.view_studenttrimestermodel',
        'PATCH': 'grading.change_studenttrimestermodel',
    }

    def get_result(self):
        return get_object_or_404(
            StudentTrimesterModel.objects.select_related('student', 'trimester'), pk=self.kwargs['pk']
        )

    def get(self, request, *args, **kwargs):
        result = self.get_result()
        averages = SubjectTrimesterAverageModel.objects.filter(
            student=result.student, trimester=result.trimester, grade_subject__grade=result.grade
        ).select_related('grade_subject__subject')
        return JsonResponse({
            'result': serialize_result(result),
            'subjects': [{
                'subject': a.grade_subject.subject.name,
                'coefficient': a.coefficient,
                'interrogation_average': as_number(a.interrogation_average),
                'devoir_average': as_number(a.devoir_average),
                'composition_average': as_number(a.composition_average),
                'average': as_number(a.average),
                'teacher_remark': a.teacher_remark,
            } for a in averages],
        })

    def patch(self, request, *args, **kwargs):
        result = self.get_result()
        form = StudentResultForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        result = services.update_result(result, request.user, **form.cleaned_data)
        return JsonResponse({'success': True, 'result': serialize_result(result)})


class ResultsCalculationView(ApiView):
    permission_required = 'grading.add_trimestercalculationjob'

    def post(self, request, *args, **kwargs):
        form = ResultsCalculationForm(self.get_json())
        if not form.is_valid():
            return self.form_invalid(form)
        job = form.save(commit=False)
        job.created_by = request.user
        job.total_grades = len(form.cleaned_data['grades'])
        job.save()
        form.save_m2m()

        transaction.on_commit(lambda: calculate_trimester_results_task.delay(str(job.job_id)))
        logger.info(f"{request.user.username} started results job {job.job_id}")
        return JsonResponse({
            'success': True,
            'message': 'Results calculation has been started in the background.',
            'job': serialize_job(job),
        }, status=202)


class ResultsJobStatusView(ApiView):
    permission_required = 'grading.view_trimestercalculationjob'

    def get(self, request, *args, **kwargs):
        job = get_object_or_404(TrimesterCalculationJob, pk=self.kwargs['pk'])
        return JsonResponse(serialize_job(job))


class CalculationStatusView(ApiView):
    permission_required = 'grading.view_studenttrimestermodel'

    def get(self, request, *args, **kwargs):
        try:
            trimester = _trimester(request)
        except Http404:
            return JsonResponse({'has_active_trimester': False, 'needs_recalculation': False})
        return JsonResponse({'has_active_trimester': True, **services.calculation_status(trimester)})


class ResultsExportView(ApiView):
    permission_required = 'grading.view_studenttrimestermodel'

    def get(self, request, *args, **kwargs):
        grade = get_object_or_404(GradeModel, pk=self.kwargs['grade_id'])
        trimester = _trimester(request)
        results = StudentTrimesterModel.objects.filter(
            grade=grade, trimester=trimester
        ).select_related('student').order_by(F('rank').asc(nulls_last=True), 'student__last_name')

        workbook = openpyxl.Workbook()
        worksheet = workbook.active
        worksheet.title = 'Results'

        headers = ['Rank', 'Student Number', 'Last Name', 'First Name', 'General Average', 'Conduct', 'Decision',
                   'Absences', 'Lates']
        for col_num, header_title in enumerate(headers, 1):
            cell = worksheet.cell(row=1, column=col_num, value=header_title)
            cell.font = Font(bold=True)

        for row_num, result in enumerate(results, 2):
            worksheet.cell(row=row_num, column=1, value=result.rank)
            worksheet.cell(row=row_num, column=2, value=result.student.student_number)
            worksheet.cell(row=row_num, column=3, value=result.student.last_name)
            worksheet.cell(row=row_num, column=4, value=result.student.first_name)
            worksheet.cell(row=row_num, column=5, value=result.general_average)
            worksheet.cell(row=row_num, column=6, value=result.conduct)
            worksheet.cell(row=row_num, column=7, value=result.get_decision_display())
            worksheet.cell(row=row_num, column=8, value=result.absences)
            worksheet.cell(row=row_num, column=9, value=result.lates)

        filename = f"{grade.name}-{trimester.name}-results.xlsx".replace(' ', '_')
        response = HttpResponse(
            content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        )
        response['Content-Disposition'] = f'attachment; filename="{filename}"'
        workbook.save(response)
        return response


def serialize_report_card(card):
    student, trimester, result, stats = card['student'], card['trimester'], card['result'], card['class_stats']
    return {
        'student': {
            'id': student.id,
            'student_number': student.student_number,
            'first_name': student.first_name,
            'last_name': student.last_name,
            'date_of_birth': student.date_of_birth,
        },
        'grade': {'id': card['grade'].id, 'name': card['grade'].name},
        'trimester': {
            'id': trimester.id,
            'number': trimester.number,
            'name': trimester.name,
            'school_year': trimester.school_year.name,
        },
        'subjects': [{
            **{key: subject[key] for key in ('subject_id', 'code', 'name', 'coefficient', 'teacher_remark')},
            **{key: as_number(subject[key]) for key in ('interrogation_average', 'devoir_average',
                                                        'composition_average', 'average', 'weighted_average')},
            'evaluations': {
                eval_type: [{**e, 'score': as_number(e['score']), 'max_score': as_number(e['max_score'])}
                            for e in entries]
                for eval_type, entries in subject['evaluations'].items()
            },
        } for subject in card['subjects']],
        'total_coefficient': card['total_coefficient'],
        'summary': serialize_result(result) if result else None,
        'class_stats': {
            'total_students': stats.total_students,
            'class_average': as_number(stats.class_average),
            'highest_average': as_number(stats.highest_average),
            'lowest_average': as_number(stats.lowest_average),
            'pass_count': stats.pass_count,
            'pass_rate': as_number(stats.pass_rate),
        } if stats else None,
    }


class ReportCardView(ApiView):
    """A student's trimester report card; ?format=pdf downloads the printable version."""
    permission_required = 'grading.view_studenttrimestermodel'

    def get(self, request, *args, **kwargs):
        student = get_object_or_404(StudentModel, pk=self.kwargs['student_id'])
        trimester = _trimester(request)
        card = report_cards.build_report_card(student, trimester)

        if request.GET.get('format') == 'pdf':
            response = HttpResponse(report_cards.render_report_card(card), content_type='application/pdf')
            filename = f"report-card-{student.student_number}-T{trimester.number}.pdf"
            response['Content-Disposition'] = f'attachment; filename="{filename}"'
            return response
        return JsonResponse(serialize_report_card(card))
