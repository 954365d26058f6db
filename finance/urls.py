from django.urls import path
from finance.views import (
    TreasuryBalanceView, DailyOpeningView, DailyClosingView, SafeTransferView, BankTransferListView,
    TransactionListView, ReverseTransactionView, DailyVerificationListView, VerificationReviewView, DailyReportView,
    PaymentListView, PaymentReceiptView, PaymentExportView, ExpenseListView, ExpenseDetailView, ExpenseDecisionView,
    ExpensePaymentView,
)

urlpatterns = [
    path('treasury/balance/', TreasuryBalanceView.as_view(), name='treasury_balance'),
    path('treasury/opening/', DailyOpeningView.as_view(), name='treasury_daily_opening'),
    path('treasury/closing/', DailyClosingView.as_view(), name='treasury_daily_closing'),
    path('treasury/transfer/', SafeTransferView.as_view(), name='treasury_safe_transfer'),
    path('treasury/bank-transfers/', BankTransferListView.as_view(), name='treasury_bank_transfers'),
    path('treasury/transactions/', TransactionListView.as_view(), name='treasury_transactions'),
    path('treasury/transactions/<int:pk>/reverse/', ReverseTransactionView.as_view(),
         name='treasury_transaction_reverse'),
    path('treasury/verifications/', DailyVerificationListView.as_view(), name='treasury_verifications'),
    path('treasury/verifications/<int:pk>/review/', VerificationReviewView.as_view(),
         name='treasury_verification_review'),
    path('treasury/daily-report/', DailyReportView.as_view(), name='treasury_daily_report'),

    path('payments/', PaymentListView.as_view(), name='payment_list'),
    path('payments/export/', PaymentExportView.as_view(), name='payment_export'),
    path('payments/<int:pk>/receipt/', PaymentReceiptView.as_view(), name='payment_receipt'),

    path('expenses/', ExpenseListView.as_view(), name='expense_list'),
    path('expenses/<int:pk>/', ExpenseDetailView.as_view(), name='expense_detail'),
    path('expenses/<int:pk>/approve/', ExpenseDecisionView.as_view(), name='expense_decision'),
    path('expenses/<int:pk>/pay/', ExpensePaymentView.as_view(), name='expense_pay'),
]
