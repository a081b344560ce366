from rest_framework.permissions import BasePermission
from .models import Dispute


class IsDisputeParticipantOrPanel(BasePermission):
    """
    Allows access only to the project's client, freelancer, the assigned
    mediator or arbitrator, or staff.
    This permission is checked against a single Dispute object.
    """
    def has_object_permission(self, request, view, obj: Dispute):
        user = request.user
        return user.is_staff or obj.project.is_participant(user) or obj.is_panel_member(user)
