from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='SchoolInfoModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=250)),
                ('short_name', models.CharField(max_length=50)),
                ('logo', models.FileField(blank=True, null=True, upload_to='images/logo')),
                ('mobile', models.CharField(max_length=20)),
                ('email', models.EmailField(max_length=254)),
                ('address', models.CharField(max_length=255)),
            ],
        ),
        migrations.CreateModel(
            name='SchoolYearModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='e.g. 2025 - 2026', max_length=20, unique=True)),
                ('start_date', models.DateField()),
                ('end_date', models.DateField()),
                ('enrollment_start', models.DateField(blank=True, null=True)),
                ('enrollment_end', models.DateField(blank=True, null=True)),
                ('is_active', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'School Year',
                'verbose_name_plural': 'School Years',
                'ordering': ['-start_date'],
            },
        ),
        migrations.CreateModel(
            name='SubjectModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=100, unique=True)),
                ('code', models.CharField(blank=True, default='', max_length=10)),
            ],
            options={
                'ordering': ['name'],
            },
        ),
        migrations.CreateModel(
            name='ActivityLogModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('category', models.CharField(blank=True, max_length=50, null=True)),
                ('sub_category', models.CharField(blank=True, max_length=50, null=True)),
                ('log', models.TextField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('school_year', models.ForeignKey(blank=True, help_text='School year of activity.', null=True,
                                                  on_delete=django.db.models.deletion.SET_NULL,
                                                  to='admin_site.schoolyearmodel')),
            ],
            options={
                'verbose_name': 'Activity Log',
                'verbose_name_plural': 'Activity Logs',
                'ordering': ['-created_at'],
            },
        ),
        migrations.CreateModel(
            name='GradeModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=50)),
                ('level', models.CharField(choices=[('kindergarten', 'Kindergarten'), ('elementary', 'Elementary'),
                                                    ('college', 'College'), ('high_school', 'High School')],
                                           default='elementary', max_length=20)),
                ('order', models.PositiveIntegerField(default=0)),
                ('tuition_fee', models.DecimalField(decimal_places=2, default=0, max_digits=14)),
                ('capacity', models.PositiveIntegerField(default=50)),
                ('created_at', models.DateTimeField(auto_now_add=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True, null=True)),
                ('school_year', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grades',
                                                  to='admin_site.schoolyearmodel')),
            ],
            options={
                'ordering': ['school_year', 'order'],
                'constraints': [
                    models.UniqueConstraint(fields=('school_year', 'name'), name='unique_grade_name_per_year'),
                ],
            },
        ),
        migrations.CreateModel(
            name='GradeRoomModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Short name, e.g. A', max_length=10)),
                ('display_name', models.CharField(help_text='e.g. 6ème A', max_length=60)),
                ('capacity', models.PositiveIntegerField(default=35)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True, null=True)),
                ('grade', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='rooms',
                                            to='admin_site.grademodel')),
            ],
            options={
                'ordering': ['grade', 'name'],
                'constraints': [
                    models.UniqueConstraint(fields=('grade', 'name'), name='unique_room_name_per_grade'),
                ],
            },
        ),
        migrations.CreateModel(
            name='GradeSubjectModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('coefficient', models.PositiveSmallIntegerField(default=1)),
                ('hours_per_week', models.PositiveSmallIntegerField(default=0)),
                ('grade', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subjects',
                                            to='admin_site.grademodel')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                              related_name='grade_subjects', to='admin_site.subjectmodel')),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('grade', 'subject'), name='unique_subject_per_grade'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TrimesterModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('number', models.PositiveSmallIntegerField(help_text='1, 2 or 3')),
                ('name', models.CharField(max_length=50)),
                ('start_date', models.DateField()),
                ('end_date', models.DateField()),
                ('is_active', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school_year', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                  related_name='trimesters', to='admin_site.schoolyearmodel')),
            ],
            options={
                'verbose_name': 'Trimester',
                'verbose_name_plural': 'Trimesters',
                'ordering': ['school_year', 'number'],
                'constraints': [
                    models.UniqueConstraint(fields=('school_year', 'number'), name='unique_trimester_number_per_year'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TimePeriodModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=50)),
                ('name_fr', models.CharField(blank=True, max_length=50, null=True)),
                ('start_time', models.TimeField()),
                ('end_time', models.TimeField()),
                ('order', models.PositiveSmallIntegerField()),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school_year', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                  related_name='time_periods', to='admin_site.schoolyearmodel')),
            ],
            options={
                'ordering': ['school_year', 'order'],
                'constraints': [
                    models.UniqueConstraint(fields=('school_year', 'order'), name='unique_period_order_per_year'),
                    models.CheckConstraint(condition=models.Q(('start_time__lt', models.F('end_time'))),
                                           name='time_period_starts_before_end'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ScheduleSlotModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('day_of_week', models.PositiveSmallIntegerField(choices=[(1, 'Monday'), (2, 'Tuesday'),
                                                                          (3, 'Wednesday'), (4, 'Thursday'),
                                                                          (5, 'Friday'), (6, 'Saturday')])),
                ('room_location', models.CharField(blank=True, help_text='Physical classroom, e.g. B12', max_length=50,
                                                   null=True)),
                ('is_break', models.BooleanField(default=False)),
                ('notes', models.CharField(blank=True, max_length=255, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('room', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_slots',
                                           to='admin_site.graderoommodel')),
                ('time_period', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                  related_name='schedule_slots', to='admin_site.timeperiodmodel')),
                ('grade_subject', models.ForeignKey(blank=True, null=True,
                                                    on_delete=django.db.models.deletion.SET_NULL,
                                                    related_name='schedule_slots',
                                                    to='admin_site.gradesubjectmodel')),
                ('teacher', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                              related_name='schedule_slots', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['day_of_week', 'time_period__order'],
                'constraints': [
                    models.UniqueConstraint(fields=('room', 'time_period', 'day_of_week'),
                                            name='unique_slot_per_room_period_day'),
                ],
            },
        ),
    ]
