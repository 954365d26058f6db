import logging
from datetime import date

from django.apps import apps
from django.contrib.auth.models import User
from django.db import models, transaction
from django.db import OperationalError

# Configure a logger for this module
logger = logging.getLogger(__name__)


def school_year_name_for(value=None):
    """
    School years run September to June. A date before September belongs to
    the school year that started the previous calendar year.
    """
    value = value or date.today()
    start_year = value.year if value.month >= 9 else value.year - 1
    return f"{start_year} - {start_year + 1}"


class SchoolInfoModel(models.Model):
    name = models.CharField(max_length=250)
    short_name = models.CharField(max_length=50)
    logo = models.FileField(upload_to='images/logo', blank=True, null=True)
    mobile = models.CharField(max_length=20)
    email = models.EmailField()
    address = models.CharField(max_length=255)

    def __str__(self):
        return self.short_name.upper()


class SchoolYearModel(models.Model):
    name = models.CharField(max_length=20, unique=True, help_text="e.g. 2025 - 2026")
    start_date = models.DateField()
    end_date = models.DateField()
    enrollment_start = models.DateField(null=True, blank=True)
    enrollment_end = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-start_date']
        verbose_name = "School Year"
        verbose_name_plural = "School Years"

    def __str__(self):
        return self.name

    @property
    def start_year(self):
        """First year token of the name ("2025 - 2026" -> "2025")."""
        return self.name.split(' ')[0] if self.name else str(self.start_date.year)

    def is_within_enrollment_period(self, on_date=None):
        on_date = on_date or date.today()
        if self.enrollment_start and on_date < self.enrollment_start:
            return False
        if self.enrollment_end and on_date > self.enrollment_end:
            return False
        return True

    @transaction.atomic
    def activate(self):
        SchoolYearModel.objects.exclude(pk=self.pk).filter(is_active=True).update(is_active=False)
        self.is_active = True
        self.save(update_fields=['is_active', 'updated_at'])
        logger.info(f"School year {self.name} activated")


class TrimesterModel(models.Model):
    school_year = models.ForeignKey(SchoolYearModel, on_delete=models.CASCADE, related_name='trimesters')
    number = models.PositiveSmallIntegerField(help_text="1, 2 or 3")
    name = models.CharField(max_length=50)
    start_date = models.DateField()
    end_date = models.DateField()
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['school_year', 'number']
        verbose_name = "Trimester"
        verbose_name_plural = "Trimesters"
        constraints = [
            models.UniqueConstraint(fields=['school_year', 'number'], name='unique_trimester_number_per_year'),
        ]

    def __str__(self):
        return f"{self.name} ({self.school_year})"

    @transaction.atomic
    def activate(self):
        # Only one trimester is active per school year.
        TrimesterModel.objects.filter(
            school_year=self.school_year, is_active=True
        ).exclude(pk=self.pk).update(is_active=False)
        self.is_active = True
        self.save(update_fields=['is_active', 'updated_at'])
        logger.info(f"Trimester {self.number} of {self.school_year} activated")


class GradeModel(models.Model):
    class Level(models.TextChoices):
        KINDERGARTEN = 'kindergarten', 'Kindergarten'
        ELEMENTARY = 'elementary', 'Elementary'
        COLLEGE = 'college', 'College'
        HIGH_SCHOOL = 'high_school', 'High School'

    school_year = models.ForeignKey(SchoolYearModel, on_delete=models.CASCADE, related_name='grades')
    name = models.CharField(max_length=50)
    level = models.CharField(max_length=20, choices=Level.choices, default=Level.ELEMENTARY)
    order = models.PositiveIntegerField(default=0)
    tuition_fee = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    capacity = models.PositiveIntegerField(default=50)
    created_at = models.DateTimeField(auto_now_add=True, blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True, blank=True, null=True)

    class Meta:
        ordering = ['school_year', 'order']
        constraints = [
            models.UniqueConstraint(fields=['school_year', 'name'], name='unique_grade_name_per_year'),
        ]

    def __str__(self):
        return self.name.upper()

    def number_of_students(self):
        EnrollmentModel = apps.get_model('student', 'EnrollmentModel')
        return EnrollmentModel.objects.filter(grade=self, status='completed').count()


class GradeRoomModel(models.Model):
    grade = models.ForeignKey(GradeModel, on_delete=models.CASCADE, related_name='rooms')
    name = models.CharField(max_length=10, help_text="Short name, e.g. A")
    display_name = models.CharField(max_length=60, help_text="e.g. 6ème A")
    capacity = models.PositiveIntegerField(default=35)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True, blank=True, null=True)
    updated_at = models.DateTimeField(auto_now=True, blank=True, null=True)

    class Meta:
        ordering = ['grade', 'name']
        constraints = [models.UniqueConstraint(fields=['grade', 'name'], name='unique_room_name_per_grade')]

    def __str__(self):
        return self.display_name

    def number_of_students(self):
        return self.assignments.filter(is_active=True).count()


class SubjectModel(models.Model):
    name = models.CharField(max_length=100, unique=True)
    code = models.CharField(max_length=10, default='', blank=True)

    class Meta:
        ordering = ['name']

    def __str__(self):
        return self.name


class GradeSubjectModel(models.Model):
    grade = models.ForeignKey(GradeModel, on_delete=models.CASCADE, related_name='subjects')
    subject = models.ForeignKey(SubjectModel, on_delete=models.CASCADE, related_name='grade_subjects')
    coefficient = models.PositiveSmallIntegerField(default=1)
    hours_per_week = models.PositiveSmallIntegerField(default=0)

    class Meta:
        constraints = [models.UniqueConstraint(fields=['grade', 'subject'], name='unique_subject_per_grade')]

    def __str__(self):
        return f"{self.subject.name} ({self.grade.name}, coef {self.coefficient})"


class TimePeriodModel(models.Model):
    """A teaching period of the school day, e.g. 08:00-09:00."""
    school_year = models.ForeignKey(SchoolYearModel, on_delete=models.CASCADE, related_name='time_periods')
    name = models.CharField(max_length=50)
    name_fr = models.CharField(max_length=50, blank=True, null=True)
    start_time = models.TimeField()
    end_time = models.TimeField()
    order = models.PositiveSmallIntegerField()
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['school_year', 'order']
        constraints = [
            models.UniqueConstraint(fields=['school_year', 'order'], name='unique_period_order_per_year'),
            models.CheckConstraint(condition=models.Q(start_time__lt=models.F('end_time')),
                                   name='time_period_starts_before_end'),
        ]

    def __str__(self):
        return f"{self.name} ({self.start_time:%H:%M}-{self.end_time:%H:%M})"

    def overlaps(self, start_time, end_time):
        return start_time < self.end_time and self.start_time < end_time


class ScheduleSlotModel(models.Model):
    """One cell of a room's weekly timetable."""

    class Day(models.IntegerChoices):
        MONDAY = 1, 'Monday'
        TUESDAY = 2, 'Tuesday'
        WEDNESDAY = 3, 'Wednesday'
        THURSDAY = 4, 'Thursday'
        FRIDAY = 5, 'Friday'
        SATURDAY = 6, 'Saturday'

    room = models.ForeignKey(GradeRoomModel, on_delete=models.CASCADE, related_name='schedule_slots')
    time_period = models.ForeignKey(TimePeriodModel, on_delete=models.CASCADE, related_name='schedule_slots')
    day_of_week = models.PositiveSmallIntegerField(choices=Day.choices)
    grade_subject = models.ForeignKey(GradeSubjectModel, on_delete=models.SET_NULL, null=True, blank=True,
                                      related_name='schedule_slots')
    teacher = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True,
                                related_name='schedule_slots')
    room_location = models.CharField(max_length=50, blank=True, null=True, help_text="Physical classroom, e.g. B12")
    is_break = models.BooleanField(default=False)
    notes = models.CharField(max_length=255, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['day_of_week', 'time_period__order']
        constraints = [
            models.UniqueConstraint(fields=['room', 'time_period', 'day_of_week'],
                                    name='unique_slot_per_room_period_day'),
        ]

    def __str__(self):
        what = 'Break' if self.is_break else (self.grade_subject.subject.name if self.grade_subject else '-')
        return f"{self.room} {self.get_day_of_week_display()} {self.time_period.name}: {what}"


class ActivityLogModel(models.Model):
    category = models.CharField(max_length=50, blank=True, null=True)
    sub_category = models.CharField(max_length=50, blank=True, null=True)
    log = models.TextField()
    created_at = models.DateTimeField(auto_now_add=True)
    school_year = models.ForeignKey(SchoolYearModel, on_delete=models.SET_NULL, null=True, blank=True,
                                    help_text="School year of activity.")

    class Meta:
        verbose_name = "Activity Log"
        verbose_name_plural = "Activity Logs"
        ordering = ['-created_at']

    def __str__(self):
        return f"[{self.created_at.strftime('%Y-%m-%d %H:%M')}] {self.category or 'N/A'} - {self.log[:50]}..."

    def save(self, *args, **kwargs):
        if self.school_year is None:
            try:
                self.school_year = get_active_school_year()
                if self.school_year is None:
                    logger.warning("No active school year found. Cannot auto-set school year for ActivityLog.")
            except OperationalError as e:
                logger.error(f"Database error fetching active school year: {e}", exc_info=True)
        super().save(*args, **kwargs)


def get_active_school_year():
    return SchoolYearModel.objects.filter(is_active=True).first()


def get_active_trimester():
    school_year = get_active_school_year()
    if not school_year:
        return None
    return TrimesterModel.objects.filter(school_year=school_year, is_active=True).first()
