from django.urls import path
from admin_site.views import (
    SchoolYearListView, SchoolYearActivateView, TrimesterListView, TrimesterActivateView,
    GradeListView, ActivityLogView, TimePeriodListView, TimePeriodDetailView, ScheduleSlotListView, ScheduleSlotDetailView,
    RoomTimetableView,
)

urlpatterns = [
    path('school-years/', SchoolYearListView.as_view(), name='school_year_list'),
    path('school-years/<int:pk>/activate/', SchoolYearActivateView.as_view(), name='school_year_activate'),

    path('trimesters/', TrimesterListView.as_view(), name='trimester_list'),
    path('trimesters/<int:pk>/activate/', TrimesterActivateView.as_view(), name='trimester_activate'),

    path('grades/', GradeListView.as_view(), name='grade_list'),
    path('activity-log/', ActivityLogView.as_view(), name='activity_log'),

    path('time-periods/', TimePeriodListView.as_view(), name='time_period_list'),
    path('time-periods/<int:pk>/', TimePeriodDetailView.as_view(), name='time_period_detail'),
    path('timetable/slots/', ScheduleSlotListView.as_view(), name='schedule_slot_list'),
    path('timetable/slots/<int:pk>/', ScheduleSlotDetailView.as_view(), name='schedule_slot_detail'),
    path('timetable/rooms/<int:pk>/', RoomTimetableView.as_view(), name='room_timetable'),
]
