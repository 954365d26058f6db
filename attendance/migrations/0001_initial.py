from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('admin_site', '0001_initial'),
        ('student', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='AttendanceSessionModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('date', models.DateField()),
                ('entry_mode', models.CharField(choices=[('checklist', 'Checklist'),
                                                         ('absences_only', 'Absences Only')],
                                                default='checklist', max_length=20)),
                ('is_complete', models.BooleanField(default=False)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('grade', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                            related_name='attendance_sessions', to='admin_site.grademodel')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  related_name='attendance_sessions', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-date', 'grade'],
                'constraints': [
                    models.UniqueConstraint(fields=('grade', 'date'), name='unique_attendance_session_per_grade_day'),
                ],
            },
        ),
        migrations.CreateModel(
            name='AttendanceRecordModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('status', models.CharField(choices=[('present', 'Present'), ('absent', 'Absent'), ('late', 'Late'),
                                                     ('excused', 'Excused')], max_length=10)),
                ('notes', models.CharField(blank=True, max_length=255, null=True)),
                ('recorded_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('session', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='records',
                                              to='attendance.attendancesessionmodel')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                              related_name='attendance_records', to='student.studentmodel')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['session', 'student__last_name'],
                'indexes': [models.Index(fields=['student', 'status'], name='attendance_student_status_idx')],
                'constraints': [
                    models.UniqueConstraint(fields=('session', 'student'), name='unique_attendance_record_per_student'),
                ],
            },
        ),
    ]
