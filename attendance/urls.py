from django.urls import path
from attendance.views import (
    GradeAttendanceView, AttendanceSessionListView, GradeAttendanceStatsView, StudentAttendanceView,
)

urlpatterns = [
    path('grades/<int:grade_id>/<str:date>/', GradeAttendanceView.as_view(), name='grade_attendance'),
    path('sessions/', AttendanceSessionListView.as_view(), name='attendance_session_list'),
    path('stats/grades/<int:grade_id>/', GradeAttendanceStatsView.as_view(), name='grade_attendance_stats'),
    path('students/<str:student>/', StudentAttendanceView.as_view(), name='student_attendance'),
]
