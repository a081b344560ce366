from django.urls import path

from .views import PayoutMethodDetailView, PayoutMethodListCreateView, ProjectTransactionListView

urlpatterns = [
    path('payout-methods/', PayoutMethodListCreateView.as_view(), name='payout-methods'),
    path('payout-methods/<int:method_id>/', PayoutMethodDetailView.as_view(), name='payout-method-detail'),
    path('projects/<int:project_id>/transactions/', ProjectTransactionListView.as_view(), name='project-transactions'),
]
