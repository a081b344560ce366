from django.urls import path

from . import views as my_views

urlpatterns = [
    # Project endpoints
    path('', my_views.ListCreateProjectAPIView.as_view(), name='list-create-project'),
    path('<int:project_id>/', my_views.RetrieveProjectAPIView.as_view(), name='retrieve-project'),
    path('<int:project_id>/assign/', my_views.AssignFreelancerAPIView.as_view(), name='assign-freelancer'),
    path('<int:project_id>/fund/', my_views.FundEscrowAPIView.as_view(), name='fund-escrow'),
    path('<int:project_id>/activity/', my_views.ListActivityLogAPIView.as_view(), name='list-project-activity'),

    # Milestone endpoints
    path('<int:project_id>/milestones/', my_views.ListCreateMilestoneAPIView.as_view(), name='list-create-milestone'),
    path('<int:project_id>/milestones/<int:milestone_id>/', my_views.RetrieveMilestoneAPIView.as_view(), name='retrieve-milestone'),
    path('<int:project_id>/milestones/<int:milestone_id>/start/', my_views.StartMilestoneAPIView.as_view(), name='start-milestone'),
    path('<int:project_id>/milestones/<int:milestone_id>/submit/', my_views.SubmitMilestoneAPIView.as_view(), name='submit-milestone'),
    path('<int:project_id>/milestones/<int:milestone_id>/approve/', my_views.ApproveMilestoneAPIView.as_view(), name='approve-milestone'),
    path('<int:project_id>/milestones/<int:milestone_id>/request-revision/', my_views.RequestRevisionAPIView.as_view(), name='request-revision'),
]
