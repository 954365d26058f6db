import logging
from datetime import timedelta

from django.db import models, transaction
from django.contrib.auth.models import User
from django.utils import timezone

from admin_site.models import SchoolYearModel, GradeModel, GradeRoomModel

logger = logging.getLogger(__name__)

DRAFT_LIFETIME_DAYS = 10
AUTO_APPROVAL_DELAY_DAYS = 3


class StudentIDGeneratorModel(models.Model):
    """
    A dedicated counter for safely generating sequential Student IDs.
    """
    last_id = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)


class EnrollmentNumberGeneratorModel(models.Model):
    """
    Per school year counter for enrollment numbers (ENR-2025-00001).
    """
    school_year = models.OneToOneField(SchoolYearModel, on_delete=models.CASCADE, related_name='enrollment_counter')
    last_number = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)


class StudentModel(models.Model):
    """
    A student of the school. Created when a new student's first enrollment
    is submitted; returning students keep their record across school years.
    """

    class Gender(models.TextChoices):
        MALE = 'male', 'Male'
        FEMALE = 'female', 'Female'

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        GRADUATED = 'graduated', 'Graduated'
        INACTIVE = 'inactive', 'Inactive'

    student_number = models.CharField(max_length=20, blank=True, unique=True)
    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=Gender.choices, blank=True, null=True)
    phone = models.CharField(max_length=20, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    guardian_name = models.CharField(max_length=100, blank=True, null=True)
    guardian_phone = models.CharField(max_length=20, blank=True, null=True)
    status = models.CharField(max_length=15, choices=Status.choices, default=Status.ACTIVE)
    is_locked_for_auto_assign = models.BooleanField(
        default=False, help_text="Locked students are left out of room auto-assignment")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['last_name', 'first_name']
        indexes = [
            models.Index(fields=['last_name', 'first_name'], name='student_name_idx'),
        ]

    def __str__(self):
        return f"{self.first_name} {self.last_name}"

    def save(self, *args, **kwargs):
        if not self.student_number:
            self.student_number = self.generate_unique_student_id()
        super().save(*args, **kwargs)

    @transaction.atomic
    def generate_unique_student_id(self):
        counter, _ = StudentIDGeneratorModel.objects.select_for_update().get_or_create(id=1)
        while True:
            counter.last_id += 1
            full_id = f"STU-{str(counter.last_id).zfill(5)}"
            if not StudentModel.objects.filter(student_number=full_id).exists():
                counter.save()
                return full_id

    def age_on(self, on_date):
        if not self.date_of_birth:
            return None
        dob = self.date_of_birth
        return on_date.year - dob.year - ((on_date.month, on_date.day) < (dob.month, dob.day))


class EnrollmentModel(models.Model):

    class Status(models.TextChoices):
        DRAFT = 'draft', 'Draft'
        SUBMITTED = 'submitted', 'Submitted'
        NEEDS_REVIEW = 'needs_review', 'Needs Review'
        COMPLETED = 'completed', 'Completed'
        REJECTED = 'rejected', 'Rejected'
        CANCELLED = 'cancelled', 'Cancelled'

    # statuses under which tuition payments are accepted
    PAYABLE_STATUSES = (Status.SUBMITTED, Status.NEEDS_REVIEW, Status.COMPLETED)

    enrollment_number = models.CharField(max_length=30, unique=True, blank=True, null=True)
    school_year = models.ForeignKey(SchoolYearModel, on_delete=models.PROTECT, related_name='enrollments')
    grade = models.ForeignKey(GradeModel, on_delete=models.PROTECT, related_name='enrollments')
    student = models.ForeignKey(StudentModel, on_delete=models.SET_NULL, null=True, blank=True,
                                related_name='enrollments')
    is_returning_student = models.BooleanField(default=False)

    # student details as captured on the enrollment form
    first_name = models.CharField(max_length=50)
    last_name = models.CharField(max_length=50)
    date_of_birth = models.DateField(null=True, blank=True)
    gender = models.CharField(max_length=10, choices=StudentModel.Gender.choices, blank=True, null=True)
    phone = models.CharField(max_length=20, blank=True, null=True)
    email = models.EmailField(blank=True, null=True)
    father_name = models.CharField(max_length=100, blank=True, null=True)
    father_phone = models.CharField(max_length=20, blank=True, null=True)
    mother_name = models.CharField(max_length=100, blank=True, null=True)
    mother_phone = models.CharField(max_length=20, blank=True, null=True)
    address = models.CharField(max_length=255, blank=True, null=True)

    original_tuition_fee = models.DecimalField(max_digits=14, decimal_places=2)
    adjusted_tuition_fee = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    adjustment_reason = models.TextField(blank=True, null=True)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    status_comment = models.TextField(blank=True, null=True)
    status_changed_at = models.DateTimeField(null=True, blank=True)
    status_changed_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                          related_name='enrollment_status_changes')

    draft_expires_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)
    auto_approve_at = models.DateTimeField(null=True, blank=True)
    approved_at = models.DateTimeField(null=True, blank=True)
    approved_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                    related_name='approved_enrollments')

    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                   related_name='created_enrollments')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['school_year', 'status'], name='enrollment_year_status_idx'),
            models.Index(fields=['grade', 'status'], name='enrollment_grade_status_idx'),
        ]
        permissions = [
            ('approve_enrollmentmodel', 'Can approve or reject enrollments'),
        ]

    def __str__(self):
        return f"{self.enrollment_number or 'DRAFT'} - {self.first_name} {self.last_name}"

    def save(self, *args, **kwargs):
        if not self.pk and self.status == self.Status.DRAFT and not self.draft_expires_at:
            self.draft_expires_at = timezone.now() + timedelta(days=DRAFT_LIFETIME_DAYS)
        super().save(*args, **kwargs)

    @property
    def tuition_fee(self):
        """The fee owed: the adjusted fee when one was set, the grade fee otherwise."""
        if self.adjusted_tuition_fee is not None:
            return self.adjusted_tuition_fee
        return self.original_tuition_fee

    @property
    def fee_was_adjusted(self):
        return self.adjusted_tuition_fee is not None and self.adjusted_tuition_fee != self.original_tuition_fee

    @transaction.atomic
    def generate_enrollment_number(self):
        counter, _ = EnrollmentNumberGeneratorModel.objects.select_for_update().get_or_create(
            school_year=self.school_year
        )
        while True:
            counter.last_number += 1
            number = f"ENR-{self.school_year.start_year}-{str(counter.last_number).zfill(5)}"
            if not EnrollmentModel.objects.filter(enrollment_number=number).exists():
                counter.save()
                return number


class EnrollmentNoteModel(models.Model):
    enrollment = models.ForeignKey(EnrollmentModel, on_delete=models.CASCADE, related_name='notes')
    title = models.CharField(max_length=200)
    content = models.TextField()
    created_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.enrollment}: {self.title}"


class PaymentScheduleModel(models.Model):
    enrollment = models.ForeignKey(EnrollmentModel, on_delete=models.CASCADE, related_name='payment_schedules')
    schedule_number = models.PositiveSmallIntegerField()
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    months = models.JSONField(default=list)
    due_date = models.DateField()
    is_paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['enrollment', 'schedule_number']
        constraints = [
            models.UniqueConstraint(fields=['enrollment', 'schedule_number'], name='unique_schedule_per_enrollment'),
        ]

    def __str__(self):
        return f"{self.enrollment} - schedule {self.schedule_number}"


class StudentRoomAssignmentModel(models.Model):
    student = models.ForeignKey(StudentModel, on_delete=models.CASCADE, related_name='room_assignments')
    grade_room = models.ForeignKey(GradeRoomModel, on_delete=models.CASCADE, related_name='assignments')
    school_year = models.ForeignKey(SchoolYearModel, on_delete=models.CASCADE, related_name='room_assignments')
    is_active = models.BooleanField(default=True)
    assigned_by = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    assigned_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['grade_room', 'student__last_name']
        constraints = [
            models.UniqueConstraint(fields=['student', 'school_year'], condition=models.Q(is_active=True),
                                    name='one_active_room_per_student_per_year'),
        ]

    def __str__(self):
        return f"{self.student} -> {self.grade_room}"
