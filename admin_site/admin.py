from django.contrib import admin
from admin_site.models import (
    SchoolInfoModel, SchoolYearModel, TrimesterModel, GradeModel, GradeRoomModel,
    SubjectModel, GradeSubjectModel, ActivityLogModel, TimePeriodModel, ScheduleSlotModel
)


admin.site.register(SchoolInfoModel)
admin.site.register(SchoolYearModel)
admin.site.register(TrimesterModel)
admin.site.register(GradeModel)
admin.site.register(GradeRoomModel)
admin.site.register(SubjectModel)
admin.site.register(GradeSubjectModel)
admin.site.register(ActivityLogModel)
admin.site.register(TimePeriodModel)


@admin.register(ScheduleSlotModel)
class ScheduleSlotAdmin(admin.ModelAdmin):
    list_display = ('room', 'day_of_week', 'time_period', 'grade_subject', 'teacher', 'room_location', 'is_break')
    list_filter = ('day_of_week', 'is_break', 'room__grade')
