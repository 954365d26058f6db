from django.contrib.auth.models import User
from django.db import models

from admin_site.models import GradeModel
from student.models import StudentModel


class AttendanceSessionModel(models.Model):
    """One roll call for a grade on a given day."""

    class EntryMode(models.TextChoices):
        CHECKLIST = 'checklist', 'Checklist'
        ABSENCES_ONLY = 'absences_only', 'Absences Only'

    grade = models.ForeignKey(GradeModel, on_delete=models.CASCADE, related_name='attendance_sessions')
    date = models.DateField()
    entry_mode = models.CharField(max_length=20, choices=EntryMode.choices, default=EntryMode.CHECKLIST)
    is_complete = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    recorded_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='attendance_sessions')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-date', 'grade']
        constraints = [
            models.UniqueConstraint(fields=['grade', 'date'], name='unique_attendance_session_per_grade_day'),
        ]

    def __str__(self):
        return f"{self.grade.name} - {self.date}"


class AttendanceRecordModel(models.Model):

    class Status(models.TextChoices):
        PRESENT = 'present', 'Present'
        ABSENT = 'absent', 'Absent'
        LATE = 'late', 'Late'
        EXCUSED = 'excused', 'Excused'

    session = models.ForeignKey(AttendanceSessionModel, on_delete=models.CASCADE, related_name='records')
    student = models.ForeignKey(StudentModel, on_delete=models.CASCADE, related_name='attendance_records')
    status = models.CharField(max_length=10, choices=Status.choices)
    notes = models.CharField(max_length=255, blank=True, null=True)
    recorded_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    recorded_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['session', 'student__last_name']
        constraints = [
            models.UniqueConstraint(fields=['session', 'student'], name='unique_attendance_record_per_student'),
        ]
        indexes = [
            models.Index(fields=['student', 'status'], name='attendance_student_status_idx'),
        ]

    def __str__(self):
        return f"{self.student} - {self.session.date}: {self.status}"
