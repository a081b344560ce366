from rest_framework import views as drf_views, generics, status
from rest_framework.response import Response
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework.permissions import IsAuthenticated
from rest_framework.authentication import SessionAuthentication
from django.shortcuts import get_object_or_404
from django.db.models import Q
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from . import serializers as my_serializers
from .permissions import IsClient, IsProjectParticipantOrStaff
from .models import ActivityLogEntry, Milestone, Project
from .services import MilestoneService, ProjectService
from escrow.services import EscrowService


ERROR_RESPONSES = {
    403: "forbidden",
    404: "not_found",
    409: "invalid_state / payout_account_missing",
}


class ListCreateProjectAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="List projects the user is a party to",
        responses={200: my_serializers.ProjectSerializer(many=True)},
    )
    def get(self, request):
        user = request.user
        projects = Project.objects.select_related('client', 'freelancer', 'escrow')
        if not user.is_staff:
            projects = projects.filter(Q(client=user) | Q(freelancer=user))
        serializer = my_serializers.ProjectSerializer(projects.order_by('-created_at'), many=True)
        return Response(serializer.data, status=status.HTTP_200_OK)

    @swagger_auto_schema(
        operation_summary="Create a project (clients only)",
        request_body=my_serializers.CreateProjectSerializer,
        responses={201: my_serializers.ProjectSerializer, 403: "forbidden", 422: "content_rejected"},
    )
    def post(self, request):
        serializer = my_serializers.CreateProjectSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        project = ProjectService().create_project(client=request.user, **serializer.validated_data)

        return Response({
            'detail': "Project created successfully.",
            'project': my_serializers.ProjectSerializer(project).data
        }, status=status.HTTP_201_CREATED)


class RetrieveProjectAPIView(generics.RetrieveAPIView):
    serializer_class = my_serializers.ProjectSerializer
    permission_classes = [IsAuthenticated, IsProjectParticipantOrStaff]
    authentication_classes = [JWTAuthentication, SessionAuthentication]
    queryset = Project.objects.select_related('client', 'freelancer', 'escrow')
    lookup_field = 'id'
    lookup_url_kwarg = 'project_id'


class AssignFreelancerAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated, IsClient]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Assign a freelancer to a project",
        request_body=my_serializers.AssignFreelancerSerializer,
        responses={200: my_serializers.ProjectSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, project_id):
        serializer = my_serializers.AssignFreelancerSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        project = ProjectService().assign_freelancer(
            client=request.user, project_id=project_id, freelancer=serializer.validated_data['freelancer'],
        )
        return Response({
            'detail': "Freelancer assigned.",
            'project': my_serializers.ProjectSerializer(project).data
        }, status=status.HTTP_200_OK)


class FundEscrowAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated, IsClient]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Record a deposit into the project's escrow",
        request_body=my_serializers.FundEscrowSerializer,
        responses={200: my_serializers.EscrowSnapshotSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, project_id):
        serializer = my_serializers.FundEscrowSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        escrow = EscrowService().fund_project(user=request.user, project_id=project_id, **serializer.validated_data)
        return Response({
            'detail': "Escrow funded.",
            'escrow': my_serializers.EscrowSnapshotSerializer(escrow).data
        }, status=status.HTTP_200_OK)


class ListCreateMilestoneAPIView(drf_views.APIView):
    permission_classes = [IsAuthenticated, IsProjectParticipantOrStaff]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="List a project's milestones in order",
        responses={200: my_serializers.MilestoneSerializer(many=True)},
    )
    def get(self, request, project_id):
        project = get_object_or_404(Project, id=project_id)
        milestones = Milestone.objects.filter(project=project).select_related('project')
        return Response(my_serializers.MilestoneSerializer(milestones, many=True).data, status=status.HTTP_200_OK)

    @swagger_auto_schema(
        operation_summary="Create a milestone (project client only)",
        request_body=my_serializers.CreateMilestoneSerializer,
        responses={201: my_serializers.MilestoneSerializer, 422: "content_rejected", **ERROR_RESPONSES},
    )
    def post(self, request, project_id):
        serializer = my_serializers.CreateMilestoneSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        milestone = MilestoneService().create_milestone(actor=request.user, project_id=project_id, **serializer.validated_data)
        return Response({
            'detail': "Milestone created.",
            'milestone': my_serializers.MilestoneSerializer(milestone).data
        }, status=status.HTTP_201_CREATED)


class RetrieveMilestoneAPIView(generics.RetrieveAPIView):
    serializer_class = my_serializers.MilestoneSerializer
    permission_classes = [IsAuthenticated, IsProjectParticipantOrStaff]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    def get_object(self):
        return get_object_or_404(
            Milestone.objects.select_related('project'),
            id=self.kwargs['milestone_id'], project_id=self.kwargs['project_id'],
        )


class MilestoneTransitionAPIView(drf_views.APIView):
    """
    Base for the milestone state machine endpoints. Subclasses name the
    service method and, where the transition takes input, its serializer.
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]
    service_method = None
    input_serializer_class = None
    success_detail = None

    def post(self, request, project_id, milestone_id):
        payload = {}
        if self.input_serializer_class is not None:
            serializer = self.input_serializer_class(data=request.data)
            serializer.is_valid(raise_exception=True)
            payload = serializer.validated_data

        operation = getattr(MilestoneService(), self.service_method)
        milestone = operation(actor=request.user, project_id=project_id, milestone_id=milestone_id, **payload)
        return Response({
            'detail': self.success_detail,
            'milestone': my_serializers.MilestoneSerializer(milestone).data
        }, status=status.HTTP_200_OK)


class StartMilestoneAPIView(MilestoneTransitionAPIView):
    service_method = 'start_milestone'
    success_detail = "Milestone started."

    @swagger_auto_schema(
        operation_summary="Start work on a milestone (assigned freelancer)",
        responses={200: my_serializers.MilestoneSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, project_id, milestone_id):
        return super().post(request, project_id, milestone_id)


class SubmitMilestoneAPIView(MilestoneTransitionAPIView):
    service_method = 'submit_milestone'
    input_serializer_class = my_serializers.SubmitMilestoneSerializer
    success_detail = "Milestone submitted for review."

    @swagger_auto_schema(
        operation_summary="Submit or resubmit a milestone (assigned freelancer)",
        request_body=my_serializers.SubmitMilestoneSerializer,
        responses={200: my_serializers.MilestoneSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, project_id, milestone_id):
        return super().post(request, project_id, milestone_id)


class ApproveMilestoneAPIView(MilestoneTransitionAPIView):
    service_method = 'approve_milestone'
    success_detail = "Milestone approved and payment released."

    @swagger_auto_schema(
        operation_summary="Approve a submitted milestone and release its payment (project client)",
        responses={
            200: my_serializers.MilestoneSerializer,
            502: openapi.Response(description="provider_failure; the failed transaction id is returned"),
            **ERROR_RESPONSES,
        },
    )
    def post(self, request, project_id, milestone_id):
        return super().post(request, project_id, milestone_id)


class RequestRevisionAPIView(MilestoneTransitionAPIView):
    service_method = 'request_revision'
    input_serializer_class = my_serializers.RequestRevisionSerializer
    success_detail = "Revision requested."

    @swagger_auto_schema(
        operation_summary="Send a submitted milestone back for revision (project client)",
        request_body=my_serializers.RequestRevisionSerializer,
        responses={200: my_serializers.MilestoneSerializer, **ERROR_RESPONSES},
    )
    def post(self, request, project_id, milestone_id):
        return super().post(request, project_id, milestone_id)


class ListActivityLogAPIView(generics.ListAPIView):
    serializer_class = my_serializers.ActivityLogEntrySerializer
    permission_classes = [IsAuthenticated, IsProjectParticipantOrStaff]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    def get_queryset(self):
        project = get_object_or_404(Project, id=self.kwargs['project_id'])
        return ActivityLogEntry.objects.filter(project=project).select_related('actor')
