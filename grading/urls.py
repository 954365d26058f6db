from django.urls import path
from grading.views import (
    EvaluationListView, EvaluationDetailView, TrimesterResultsView, StudentResultView, ResultsCalculationView,
    ResultsJobStatusView, CalculationStatusView, ResultsExportView, ReportCardView,
)

urlpatterns = [
    path('evaluations/', EvaluationListView.as_view(), name='evaluation_list'),
    path('evaluations/<int:pk>/', EvaluationDetailView.as_view(), name='evaluation_detail'),

    path('results/grades/<int:grade_id>/', TrimesterResultsView.as_view(), name='trimester_results'),
    path('results/grades/<int:grade_id>/export/', ResultsExportView.as_view(), name='trimester_results_export'),
    path('results/<int:pk>/', StudentResultView.as_view(), name='student_result'),
    path('report-cards/<int:student_id>/', ReportCardView.as_view(), name='report_card'),

    path('calculations/', ResultsCalculationView.as_view(), name='results_calculation'),
    path('calculations/status/', CalculationStatusView.as_view(), name='calculation_status'),
    path('calculations/<uuid:pk>/', ResultsJobStatusView.as_view(), name='results_job_status'),
]
