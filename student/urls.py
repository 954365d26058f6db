from django.urls import path
from student.views import (
    EnrollmentListView, EnrollmentDetailView, EnrollmentSubmitView, EnrollmentApproveView, EnrollmentRejectView,
    EnrollmentCancelView, StudentListView, GradeAutoAssignView, RoomAssignmentView, RoomRosterExportView,
)

urlpatterns = [
    path('enrollments/', EnrollmentListView.as_view(), name='enrollment_list'),
    path('enrollments/<int:pk>/', EnrollmentDetailView.as_view(), name='enrollment_detail'),
    path('enrollments/<int:pk>/submit/', EnrollmentSubmitView.as_view(), name='enrollment_submit'),
    path('enrollments/<int:pk>/approve/', EnrollmentApproveView.as_view(), name='enrollment_approve'),
    path('enrollments/<int:pk>/reject/', EnrollmentRejectView.as_view(), name='enrollment_reject'),
    path('enrollments/<int:pk>/cancel/', EnrollmentCancelView.as_view(), name='enrollment_cancel'),

    path('', StudentListView.as_view(), name='student_list'),

    path('grades/<int:pk>/auto-assign/', GradeAutoAssignView.as_view(), name='grade_auto_assign'),
    path('room-assignments/', RoomAssignmentView.as_view(), name='room_assignment'),
    path('rooms/<int:pk>/roster/', RoomRosterExportView.as_view(), name='room_roster_export'),
]
