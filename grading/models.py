import uuid

from django.contrib.auth.models import User
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models

from admin_site.models import TrimesterModel, GradeModel, GradeSubjectModel
from student.models import StudentModel


class EvaluationModel(models.Model):

    class Type(models.TextChoices):
        INTERROGATION = 'interrogation', 'Interrogation'
        DEVOIR_SURVEILLE = 'devoir_surveille', 'Devoir Surveillé'
        COMPOSITION = 'composition', 'Composition'

    student = models.ForeignKey(StudentModel, on_delete=models.CASCADE, related_name='evaluations')
    grade_subject = models.ForeignKey(GradeSubjectModel, on_delete=models.CASCADE, related_name='evaluations')
    trimester = models.ForeignKey(TrimesterModel, on_delete=models.CASCADE, related_name='evaluations')
    type = models.CharField(max_length=20, choices=Type.choices)
    score = models.DecimalField(max_digits=5, decimal_places=2, validators=[MinValueValidator(0)])
    max_score = models.DecimalField(max_digits=5, decimal_places=2, default=20,
                                    validators=[MinValueValidator(1)])
    evaluation_date = models.DateField()
    notes = models.CharField(max_length=255, blank=True, null=True)
    recorded_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-evaluation_date', 'student__last_name']
        indexes = [
            models.Index(fields=['trimester', 'grade_subject'],
                         name='evaluation_trimester_subj_idx'),
            models.Index(fields=['student', 'trimester'], name='evaluation_student_trim_idx'),
        ]

    def __str__(self):
        return f"{self.student} - {self.grade_subject.subject.name} ({self.get_type_display()}): {self.score}/{self.max_score}"


class SubjectTrimesterAverageModel(models.Model):
    student = models.ForeignKey(StudentModel, on_delete=models.CASCADE, related_name='subject_averages')
    grade_subject = models.ForeignKey(GradeSubjectModel, on_delete=models.CASCADE, related_name='averages')
    trimester = models.ForeignKey(TrimesterModel, on_delete=models.CASCADE, related_name='subject_averages')
    interrogation_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    devoir_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    composition_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    average = models.DecimalField(max_digits=5, decimal_places=2)
    coefficient = models.PositiveSmallIntegerField(default=1)
    teacher_remark = models.CharField(max_length=255, blank=True, null=True)
    calculated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['student', 'grade_subject__subject__name']
        constraints = [
            models.UniqueConstraint(fields=['student', 'grade_subject', 'trimester'],
                                    name='unique_subject_average_per_trimester'),
        ]

    def __str__(self):
        return f"{self.student} - {self.grade_subject.subject.name}: {self.average}"


class StudentTrimesterModel(models.Model):
    """A student's trimester result: general average, rank in the grade and decision."""

    class Decision(models.TextChoices):
        PENDING = 'pending', 'Pending'
        ADMIS = 'admis', 'Admis'
        RATTRAPAGE = 'rattrapage', 'Rattrapage'
        REDOUBLE = 'redouble', 'Redouble'

    student = models.ForeignKey(StudentModel, on_delete=models.CASCADE, related_name='trimester_results')
    trimester = models.ForeignKey(TrimesterModel, on_delete=models.CASCADE, related_name='student_results')
    grade = models.ForeignKey(GradeModel, on_delete=models.CASCADE, related_name='trimester_results')
    general_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    rank = models.PositiveIntegerField(null=True, blank=True)
    total_students = models.PositiveIntegerField(default=0)
    conduct = models.DecimalField(max_digits=4, decimal_places=2, null=True, blank=True,
                                  validators=[MinValueValidator(0), MaxValueValidator(20)])
    decision = models.CharField(max_length=15, choices=Decision.choices, default=Decision.PENDING)
    decision_override = models.BooleanField(default=False)
    decision_override_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                             related_name='overridden_decisions')
    absences = models.PositiveIntegerField(default=0)
    lates = models.PositiveIntegerField(default=0)
    remarks = models.TextField(blank=True, null=True)
    calculated_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['grade', 'rank']
        constraints = [
            models.UniqueConstraint(fields=['student', 'trimester'], name='unique_result_per_student_trimester'),
        ]

    def __str__(self):
        return f"{self.student} - {self.trimester}: {self.general_average} (rank {self.rank})"


class ClassTrimesterStatsModel(models.Model):
    grade = models.ForeignKey(GradeModel, on_delete=models.CASCADE, related_name='trimester_stats')
    trimester = models.ForeignKey(TrimesterModel, on_delete=models.CASCADE, related_name='class_stats')
    total_students = models.PositiveIntegerField(default=0)
    class_average = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    highest_average = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    lowest_average = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    pass_count = models.PositiveIntegerField(default=0)
    pass_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    calculated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['grade', 'trimester'], name='unique_class_stats_per_trimester'),
        ]

    def __str__(self):
        return f"{self.grade.name} - {self.trimester}: {self.class_average}"


class TrimesterCalculationJob(models.Model):
    """Tracks the status of an asynchronous trimester results calculation."""

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        IN_PROGRESS = 'in_progress', 'In Progress'
        SUCCESS = 'success', 'Success'
        FAILURE = 'failure', 'Failure'

    job_id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    trimester = models.ForeignKey(TrimesterModel, on_delete=models.CASCADE)
    grades = models.ManyToManyField(GradeModel)
    recalculate = models.BooleanField(default=False, help_text="Recalculate grades that already have results")

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    total_grades = models.PositiveIntegerField(default=0)
    processed_grades = models.PositiveIntegerField(default=0)
    skipped_grades = models.PositiveIntegerField(default=0)
    students_processed = models.PositiveIntegerField(default=0)
    error_message = models.TextField(blank=True, null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)

    def __str__(self):
        return f"Results Job for {self.trimester}"

    @property
    def is_complete(self):
        return self.status in (self.Status.SUCCESS, self.Status.FAILURE)
