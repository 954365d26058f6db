from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion
import uuid


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ('admin_site', '0001_initial'),
        ('student', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='EvaluationModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('interrogation', 'Interrogation'),
                                                   ('devoir_surveille', 'Devoir Surveillé'),
                                                   ('composition', 'Composition')], max_length=20)),
                ('score', models.DecimalField(decimal_places=2, max_digits=5,
                                              validators=[django.core.validators.MinValueValidator(0)])),
                ('max_score', models.DecimalField(decimal_places=2, default=20, max_digits=5,
                                                  validators=[django.core.validators.MinValueValidator(1)])),
                ('evaluation_date', models.DateField()),
                ('notes', models.CharField(blank=True, max_length=255, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='evaluations',
                                              to='student.studentmodel')),
                ('grade_subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                    related_name='evaluations', to='admin_site.gradesubjectmodel')),
                ('trimester', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                related_name='evaluations', to='admin_site.trimestermodel')),
                ('recorded_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                  to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-evaluation_date', 'student__last_name'],
                'indexes': [
                    models.Index(fields=['trimester', 'grade_subject'], name='evaluation_trimester_subj_idx'),
                    models.Index(fields=['student', 'trimester'], name='evaluation_student_trim_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='SubjectTrimesterAverageModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('interrogation_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('devoir_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('composition_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('average', models.DecimalField(decimal_places=2, max_digits=5)),
                ('coefficient', models.PositiveSmallIntegerField(default=1)),
                ('teacher_remark', models.CharField(blank=True, max_length=255, null=True)),
                ('calculated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                              related_name='subject_averages', to='student.studentmodel')),
                ('grade_subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                    related_name='averages', to='admin_site.gradesubjectmodel')),
                ('trimester', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                related_name='subject_averages', to='admin_site.trimestermodel')),
            ],
            options={
                'ordering': ['student', 'grade_subject__subject__name'],
                'constraints': [
                    models.UniqueConstraint(fields=('student', 'grade_subject', 'trimester'),
                                            name='unique_subject_average_per_trimester'),
                ],
            },
        ),
        migrations.CreateModel(
            name='StudentTrimesterModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('general_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('rank', models.PositiveIntegerField(blank=True, null=True)),
                ('total_students', models.PositiveIntegerField(default=0)),
                ('conduct', models.DecimalField(blank=True, decimal_places=2, max_digits=4, null=True,
                                                validators=[django.core.validators.MinValueValidator(0),
                                                            django.core.validators.MaxValueValidator(20)])),
                ('decision', models.CharField(choices=[('pending', 'Pending'), ('admis', 'Admis'),
                                                       ('rattrapage', 'Rattrapage'), ('redouble', 'Redouble')],
                                              default='pending', max_length=15)),
                ('decision_override', models.BooleanField(default=False)),
                ('absences', models.PositiveIntegerField(default=0)),
                ('lates', models.PositiveIntegerField(default=0)),
                ('remarks', models.TextField(blank=True, null=True)),
                ('calculated_at', models.DateTimeField(blank=True, null=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                              related_name='trimester_results', to='student.studentmodel')),
                ('trimester', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                related_name='student_results', to='admin_site.trimestermodel')),
                ('grade', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                            related_name='trimester_results', to='admin_site.grademodel')),
                ('decision_override_by', models.ForeignKey(blank=True, null=True,
                                                           on_delete=django.db.models.deletion.SET_NULL,
                                                           related_name='overridden_decisions',
                                                           to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['grade', 'rank'],
                'constraints': [
                    models.UniqueConstraint(fields=('student', 'trimester'),
                                            name='unique_result_per_student_trimester'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ClassTrimesterStatsModel',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('total_students', models.PositiveIntegerField(default=0)),
                ('class_average', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ('highest_average', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ('lowest_average', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ('pass_count', models.PositiveIntegerField(default=0)),
                ('pass_rate', models.DecimalField(decimal_places=2, default=0, max_digits=5)),
                ('calculated_at', models.DateTimeField(auto_now=True)),
                ('grade', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                            related_name='trimester_stats', to='admin_site.grademodel')),
                ('trimester', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                related_name='class_stats', to='admin_site.trimestermodel')),
            ],
            options={
                'constraints': [
                    models.UniqueConstraint(fields=('grade', 'trimester'), name='unique_class_stats_per_trimester'),
                ],
            },
        ),
        migrations.CreateModel(
            name='TrimesterCalculationJob',
            fields=[
                ('job_id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('recalculate', models.BooleanField(default=False,
                                                    help_text='Recalculate grades that already have results')),
                ('status', models.CharField(choices=[('pending', 'Pending'), ('in_progress', 'In Progress'),
                                                     ('success', 'Success'), ('failure', 'Failure')],
                                            default='pending', max_length=20)),
                ('total_grades', models.PositiveIntegerField(default=0)),
                ('processed_grades', models.PositiveIntegerField(default=0)),
                ('skipped_grades', models.PositiveIntegerField(default=0)),
                ('students_processed', models.PositiveIntegerField(default=0)),
                ('error_message', models.TextField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('trimester', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE,
                                                to='admin_site.trimestermodel')),
                ('grades', models.ManyToManyField(to='admin_site.grademodel')),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL,
                                                 to=settings.AUTH_USER_MODEL)),
            ],
        ),
    ]
