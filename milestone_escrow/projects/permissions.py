from rest_framework.permissions import BasePermission
from .models import Project


class IsClient(BasePermission):
    def has_permission(self, request, view):
        return request.user and request.user.user_type == 'client'


class IsProjectParticipantOrStaff(BasePermission):
    """
    Allows access only to the client, the assigned freelancer, or staff.
    Expects the view to have 'project_id' in kwargs. A missing project is
    let through so the view can answer with a 404.
    """

    def has_permission(self, request, view):
        project_id = view.kwargs.get('project_id')
        if not project_id:
            return False
        project = Project.objects.filter(id=project_id).only('client_id', 'freelancer_id').first()
        if project is None:
            return True

        user = request.user
        return user.is_staff or project.is_participant(user)
