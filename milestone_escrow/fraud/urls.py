from django.urls import path

from .views import UserRiskAssessmentAPIView

urlpatterns = [
    path('users/<int:user_id>/risk/', UserRiskAssessmentAPIView.as_view(), name='user-risk-assessment'),
]
