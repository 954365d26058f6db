import logging
from collections import defaultdict

from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from attendance.services import absence_counts
from student.services import enrolled_students
from . import calculations
from .models import (
    EvaluationModel, SubjectTrimesterAverageModel, StudentTrimesterModel, ClassTrimesterStatsModel,
)

logger = logging.getLogger(__name__)

Decision = StudentTrimesterModel.Decision


def _check_trimester(trimester, grade):
    if trimester.school_year_id != grade.school_year_id:
        raise ValidationError(
            "The trimester does not belong to the grade's school year.", code='trimester_mismatch'
        )


@transaction.atomic
def record_evaluations(trimester, grade_subject, eval_type, evaluation_date, scores, recorded_by, max_score=20):
    """
    Records one evaluation per entry of `scores` (dicts with student, score and
    optional notes) for a subject of a grade. Every student must be enrolled
    in the grade and no score may exceed `max_score`.
    """
    grade = grade_subject.grade
    _check_trimester(trimester, grade)
    if not trimester.start_date <= evaluation_date <= trimester.end_date:
        raise ValidationError(
            "The evaluation date is outside the trimester.", code='date_outside_trimester',
            params={'start_date': trimester.start_date, 'end_date': trimester.end_date},
        )

    enrolled = {student.id for student, _ in enrolled_students(grade)}
    evaluations = []
    for entry in scores:
        student = entry['student']
        if student.id not in enrolled:
            raise ValidationError(
                f"{student} is not enrolled in {grade.name}.", code='not_enrolled', params={'student': student.id}
            )
        if entry['score'] > max_score:
            raise ValidationError(
                f"Score for {student} exceeds the maximum of {max_score}.", code='score_above_max',
                params={'student': student.id, 'max_score': max_score},
            )
        evaluations.append(EvaluationModel(
            student=student, grade_subject=grade_subject, trimester=trimester, type=eval_type,
            score=entry['score'], max_score=max_score, evaluation_date=evaluation_date,
            notes=entry.get('notes') or None, recorded_by=recorded_by,
        ))

    created = EvaluationModel.objects.bulk_create(evaluations)
    logger.info(
        f"{recorded_by.username} recorded {len(created)} {eval_type} score(s) for "
        f"{grade_subject.subject.name} in {grade.name}"
    )
    return created


def calculate_subject_averages(trimester, grade, students=None):
    """Upserts the subject averages of the grade's students; returns {student_id: [(average, coefficient)]}."""
    evaluations = EvaluationModel.objects.filter(
        trimester=trimester, grade_subject__grade=grade
    ).select_related('grade_subject')
    if students is not None:
        evaluations = evaluations.filter(student__in=students)

    grouped = defaultdict(list)
    subjects = {}
    for evaluation in evaluations:
        grouped[(evaluation.student_id, evaluation.grade_subject_id)].append(
            (evaluation.type, evaluation.score, evaluation.max_score)
        )
        subjects[evaluation.grade_subject_id] = evaluation.grade_subject

    per_student = defaultdict(list)
    for (student_id, grade_subject_id), rows in grouped.items():
        result = calculations.subject_average(rows)
        coefficient = subjects[grade_subject_id].coefficient
        SubjectTrimesterAverageModel.objects.update_or_create(
            student_id=student_id, grade_subject_id=grade_subject_id, trimester=trimester,
            defaults={**result, 'coefficient': coefficient},
        )
        per_student[student_id].append((result['average'], coefficient))
    return per_student


def grade_has_results(trimester, grade):
    return StudentTrimesterModel.objects.filter(trimester=trimester, grade=grade).exists()


@transaction.atomic
def calculate_grade_results(trimester, grade, recalculate=False):
    """
    Computes subject averages, general averages, ranks and decisions of the
    grade's enrolled students for the trimester, with their absences and lates
    from attendance inside the trimester dates.

    Returns None when the grade already has results and `recalculate` is False,
    otherwise the number of students processed. Conduct marks, remarks and
    overridden decisions survive a recalculation.
    """
    _check_trimester(trimester, grade)
    if not recalculate and grade_has_results(trimester, grade):
        logger.info(f"Results for {grade.name} in {trimester} already exist, skipping")
        return None

    students = [student for student, _ in enrolled_students(grade)]
    per_student = calculate_subject_averages(trimester, grade, students)
    averages = {student.id: calculations.general_average(per_student.get(student.id, [])) for student in students}
    ranked = {student_id: average for student_id, average in averages.items() if average is not None}
    ranks = calculations.rank(ranked)
    attendance = absence_counts(students, trimester.start_date, trimester.end_date)
    now = timezone.now()

    existing = {
        result.student_id: result
        for result in StudentTrimesterModel.objects.select_for_update().filter(trimester=trimester, grade=grade)
    }
    for student in students:
        average = averages[student.id]
        absences, lates = attendance.get(student.id, (0, 0))
        result = existing.get(student.id) or StudentTrimesterModel(student=student, trimester=trimester, grade=grade)
        result.general_average = average
        result.rank = ranks.get(student.id)
        result.total_students = len(ranked)
        result.absences = absences
        result.lates = lates
        result.calculated_at = now
        if not result.decision_override:
            result.decision = calculations.decision_for(average)
        result.save()

    # students who left the grade since the last calculation
    StudentTrimesterModel.objects.filter(trimester=trimester, grade=grade).exclude(
        student__in=students
    ).delete()

    ClassTrimesterStatsModel.objects.update_or_create(
        grade=grade, trimester=trimester, defaults=calculations.class_statistics(ranked.values())
    )
    logger.info(f"Calculated results of {len(students)} student(s) in {grade.name} for {trimester}")
    return len(students)


@transaction.atomic
def update_result(result, updated_by, conduct=None, decision=None, remarks=None):
    """Conduct mark, remarks and a manual decision that later calculations keep."""
    if conduct is not None:
        result.conduct = conduct
    if remarks is not None:
        result.remarks = remarks
    if decision is not None and decision != result.decision:
        if decision == Decision.PENDING:
            raise ValidationError("A decision cannot be set back to pending.", code='invalid_decision')
        result.decision = decision
        result.decision_override = True
        result.decision_override_by = updated_by
        logger.info(f"{updated_by.username} set decision of {result.student} in {result.trimester} to {decision}")
    result.save()
    return result


def calculation_status(trimester):
    """Whether evaluations were entered since the trimester's results were last calculated."""
    evaluations = EvaluationModel.objects.filter(trimester=trimester)
    last_averages = SubjectTrimesterAverageModel.objects.filter(trimester=trimester).aggregate(
        last=Max('calculated_at'))['last']
    last_results = StudentTrimesterModel.objects.filter(trimester=trimester).aggregate(
        last=Max('calculated_at'))['last']
    last_calculation = max((t for t in (last_averages, last_results) if t), default=None)

    total = evaluations.count()
    pending = evaluations.filter(created_at__gt=last_calculation).count() if last_calculation else total
    return {
        'trimester_id': trimester.id,
        'trimester': trimester.name,
        'last_subject_averages_calculation': last_averages,
        'last_results_calculation': last_results,
        'total_evaluations': total,
        'pending_evaluations': pending,
        'calculated_averages': SubjectTrimesterAverageModel.objects.filter(trimester=trimester).count(),
        'calculated_results': StudentTrimesterModel.objects.filter(
            trimester=trimester, calculated_at__isnull=False).count(),
        'needs_recalculation': pending > 0,
    }
