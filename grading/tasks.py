from celery import shared_task
from django.utils import timezone
import logging

from .models import TrimesterCalculationJob
from .services import calculate_grade_results

logger = logging.getLogger(__name__)


@shared_task
def calculate_trimester_results_task(job_id):
    """
    Background task computing the trimester results of every grade selected
    for the job. Grades that already have results are skipped unless the job
    asks for a recalculation.
    """
    job = None
    grades_processed = 0

    try:
        # 1. Get the job record from the database
        job = TrimesterCalculationJob.objects.select_related('trimester').get(pk=job_id)
        job.status = TrimesterCalculationJob.Status.IN_PROGRESS
        job.save()

        grades = list(job.grades.order_by('order'))
        job.total_grades = len(grades)
        job.save(update_fields=['total_grades'])

        # 2. Each grade is calculated in its own transaction
        for i, grade in enumerate(grades):
            grades_processed = i + 1
            students = calculate_grade_results(job.trimester, grade, recalculate=job.recalculate)
            if students is None:
                job.skipped_grades += 1
            else:
                job.students_processed += students

            # 3. Update the progress after each grade
            job.processed_grades = grades_processed
            job.save(update_fields=['processed_grades', 'skipped_grades', 'students_processed'])

        # 4. Mark the job as successful
        job.status = TrimesterCalculationJob.Status.SUCCESS
        job.error_message = ""
        logger.info(
            f"Results job {job_id} done: {job.students_processed} student(s), {job.skipped_grades} grade(s) skipped"
        )

    except Exception as e:
        # 5. If any error occurs, mark the job as failed and record the error
        if job:
            job.status = TrimesterCalculationJob.Status.FAILURE
            job.error_message = f"Error after {grades_processed} grade(s): {str(e)}"
        logger.exception(f"Trimester results calculation failed for job {job_id}")

    finally:
        # 6. Always set the completion time
        if job:
            job.completed_at = timezone.now()
            job.save()
