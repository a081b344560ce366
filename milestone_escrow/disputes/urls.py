from django.urls import path

from . import views

urlpatterns = [
    path(
        'projects/<int:project_id>/milestones/<int:milestone_id>/disputes/',
        views.OpenDisputeAPIView.as_view(),
        name='milestone-disputes-open',
    ),
    path(
        'disputes/',
        views.ListDisputesAPIView.as_view(),
        name='disputes-list',
    ),
    path(
        'disputes/<int:id>/',
        views.RetrieveDisputeAPIView.as_view(),
        name='disputes-detail',
    ),
    path(
        'disputes/<int:id>/advance/',
        views.AdvanceDisputeAPIView.as_view(),
        name='disputes-advance',
    ),
    path(
        'disputes/<int:id>/resolve/',
        views.ResolveDisputeAPIView.as_view(),
        name='disputes-resolve',
    ),
    path(
        'disputes/<int:id>/withdraw/',
        views.WithdrawDisputeAPIView.as_view(),
        name='disputes-withdraw',
    ),
    path(
        'disputes/<int:id>/messages/',
        views.ListCreateDisputeMessageAPIView.as_view(),
        name='disputes-messages',
    ),
]
