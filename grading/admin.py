from django.contrib import admin
from grading.models import EvaluationModel, SubjectTrimesterAverageModel, StudentTrimesterModel, \
    ClassTrimesterStatsModel, TrimesterCalculationJob


@admin.register(EvaluationModel)
class EvaluationAdmin(admin.ModelAdmin):
    list_display = ('student', 'grade_subject', 'trimester', 'type', 'score', 'max_score', 'evaluation_date')
    list_filter = ('type', 'trimester', 'grade_subject__grade')
    search_fields = ('student__student_number', 'student__last_name')


@admin.register(StudentTrimesterModel)
class StudentTrimesterAdmin(admin.ModelAdmin):
    list_display = ('student', 'grade', 'trimester', 'general_average', 'rank', 'decision', 'decision_override')
    list_filter = ('decision', 'trimester', 'grade')


@admin.register(TrimesterCalculationJob)
class TrimesterCalculationJobAdmin(admin.ModelAdmin):
    list_display = ('job_id', 'trimester', 'status', 'processed_grades', 'total_grades', 'created_at')
    readonly_fields = ('status', 'total_grades', 'processed_grades', 'skipped_grades', 'students_processed',
                       'error_message', 'completed_at')


admin.site.register(SubjectTrimesterAverageModel)
admin.site.register(ClassTrimesterStatsModel)
