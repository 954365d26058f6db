from django.contrib import admin
from attendance.models import AttendanceSessionModel, AttendanceRecordModel


class AttendanceRecordInline(admin.TabularInline):
    model = AttendanceRecordModel
    extra = 0
    raw_id_fields = ('student',)


@admin.register(AttendanceSessionModel)
class AttendanceSessionAdmin(admin.ModelAdmin):
    list_display = ('grade', 'date', 'entry_mode', 'is_complete', 'recorded_by')
    list_filter = ('entry_mode', 'is_complete', 'grade')
    date_hierarchy = 'date'
    inlines = [AttendanceRecordInline]


@admin.register(AttendanceRecordModel)
class AttendanceRecordAdmin(admin.ModelAdmin):
    list_display = ('student', 'session', 'status')
    list_filter = ('status',)
    search_fields = ('student__student_number', 'student__last_name')
