from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


GENDER_CHOICES = [('male', 'Male'), ('female', 'Female')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('admin_site', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='StudentIDGeneratorModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('last_id', models.PositiveIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='EnrollmentNumberGeneratorModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('last_number', models.PositiveIntegerField(default=0)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school_year', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE,
                                                     related_name='enrollment_counter',
                                                     to='admin_site.schoolyearmodel')),
            ],
        ),
        migrations.CreateModel(
            name='StudentModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('student_number', models.CharField(blank=True, max_length=20, unique=True)),
                ('first_name', models.CharField(max_length=50)),
                ('last_name', models.CharField(max_length=50)),
                ('date_of_birth', models.DateField(blank=True, null=True)),
                ('gender', models.CharField(blank=True, choices=GENDER_CHOICES, max_length=10, null=True)),
                ('phone', models.CharField(blank=True, max_length=20, null=True)),
                ('email', models.EmailField(blank=True, max_length=254, null=True)),
                ('guardian_name', models.CharField(blank=True, max_length=100, null=True)),
                ('guardian_phone', models.CharField(blank=True, max_length=20, null=True)),
                ('status', models.CharField(choices=[('active', 'Active'), ('graduated', 'Graduated'),
                                                     ('inactive', 'Inactive')], default='active', max_length=15)),
                ('is_locked_for_auto_assign', models.BooleanField(
                    default=False, help_text='Locked students are left out of room auto-assignment')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ['last_name', 'first_name'],
                'indexes': [models.Index(fields=['last_name', 'first_name'], name='student_name_idx')],
            },
        ),
        migrations.CreateModel(
            name='EnrollmentModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('enrollment_number', models.CharField(blank=True, max_length=30, null=True, unique=True)),
                ('is_returning_student', models.BooleanField(default=False)),
                ('first_name', models.CharField(max_length=50)),
                ('last_name', models.CharField(max_length=50)),
                ('date_of_birth', models.DateField(blank=True, null=True)),
                ('gender', models.CharField(blank=True, choices=GENDER_CHOICES, max_length=10, null=True)),
                ('phone', models.CharField(blank=True, max_length=20, null=True)),
                ('email', models.EmailField(blank=True, max_length=254, null=True)),
                ('father_name', models.CharField(blank=True, max_length=100, null=True)),
                ('father_phone', models.CharField(blank=True, max_length=20, null=True)),
                ('mother_name', models.CharField(blank=True, max_length=100, null=True)),
                ('mother_phone', models.CharField(blank=True, max_length=20, null=True)),
                ('address', models.CharField(blank=True, max_length=255, null=True)),
                ('original_tuition_fee', models.DecimalField(decimal_places=2, max_digits=14)),
                ('adjusted_tuition_fee', models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ('adjustment_reason', models.TextField(blank=True, null=True)),
                ('status', models.CharField(choices=[('draft', 'Draft'), ('submitted', 'Submitted'),
                                                     ('needs_review', 'Needs Review'), ('completed', 'Completed'),
                                                     ('rejected', 'Rejected'), ('cancelled', 'Cancelled')],
                                            default='draft', max_length=20)),
                ('status_comment', models.TextField(blank=True, null=True)),
                ('status_changed_at', models.DateTimeField(blank=True, null=True)),
                ('draft_expires_at', models.DateTimeField(blank=True, null=True)),
                ('submitted_at', models.DateTimeField(blank=True, null=True)),
                ('auto_approve_at', models.DateTimeField(blank=True, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school_year', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT,
                                                  related_name='enrollments', to='admin_site.schoolyearmodel')),
                ('grade', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='enrollments',
                                            to='admin_site.grademodel')),
                ('student', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                              related_name='enrollments', to='student.studentmodel')),
                ('status_changed_by', models.ForeignKey(blank=True, null=True,
                                                        on_delete=django.db.models.deletion.SET_NULL,
                                                        related_name='enrollment_status_changes',
                                                        to=settings.AUTH_USER_MODEL)),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='approved_enrollments', to=settings.AUTH_USER_MODEL)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                 related_name='created_enrollments', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
                'permissions': [('approve_enrollmentmodel', 'Can approve or reject enrollments')],
                'indexes': [
                    models.Index(fields=['school_year', 'status'], name='enrollment_year_status_idx'),
                    models.Index(fields=['grade', 'status'], name='enrollment_grade_status_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='EnrollmentNoteModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(max_length=200)),
                ('content', models.TextField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('enrollment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notes',
                                                 to='student.enrollmentmodel')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                 to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='PaymentScheduleModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('schedule_number', models.PositiveSmallIntegerField()),
                ('amount', models.DecimalField(decimal_places=2, max_digits=14)),
                ('months', models.JSONField(default=list)),
                ('due_date', models.DateField()),
                ('is_paid', models.BooleanField(default=False)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('enrollment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                 related_name='payment_schedules', to='student.enrollmentmodel')),
            ],
            options={
                'ordering': ['enrollment', 'schedule_number'],
                'constraints': [
                    models.UniqueConstraint(fields=('enrollment', 'schedule_number'),
                                            name='unique_schedule_per_enrollment'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StudentRoomAssignmentModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('is_active', models.BooleanField(default=True)),
                ('assigned_at', models.DateTimeField(auto_now_add=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                              related_name='room_assignments', to='student.studentmodel')),
                ('grade_room', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                 related_name='assignments', to='admin_site.graderoommodel')),
                ('school_year', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                  related_name='room_assignments', to='admin_site.schoolyearmodel')),
                ('assigned_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['grade_room', 'student__last_name'],
                'constraints': [
                    models.UniqueConstraint(condition=models.Q(('is_active', True)), fields=('student', 'school_year'),
                                            name='one_active_room_per_student_per_year'),
                ],
            },
        ),
    ]
