from django.contrib import admin
from student.models import StudentModel, EnrollmentModel, EnrollmentNoteModel, PaymentScheduleModel, \
    StudentRoomAssignmentModel


@admin.register(StudentModel)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('student_number', 'last_name', 'first_name', 'gender', 'status')
    search_fields = ('student_number', 'last_name', 'first_name')
    list_filter = ('status', 'gender')


@admin.register(EnrollmentModel)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ('enrollment_number', 'last_name', 'first_name', 'grade', 'status', 'created_at')
    search_fields = ('enrollment_number', 'last_name', 'first_name')
    list_filter = ('status', 'school_year', 'grade')


admin.site.register(EnrollmentNoteModel)
admin.site.register(PaymentScheduleModel)
admin.site.register(StudentRoomAssignmentModel)
