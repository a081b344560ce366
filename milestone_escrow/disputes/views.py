from rest_framework import generics, status, filters
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework.authentication import SessionAuthentication
from rest_framework_simplejwt.authentication import JWTAuthentication
from django.shortcuts import get_object_or_404
from django.db.models import Q
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from . import serializers as my_serializers
from .permissions import IsDisputeParticipantOrPanel
from .models import Dispute, DisputeMessage
from .services import DisputeService
from projects.serializers import MilestoneSerializer


ERROR_RESPONSES = {
    403: "forbidden",
    404: "not_found",
    409: "invalid_state / payout_account_missing",
}


class OpenDisputeAPIView(APIView):
    """
    Allows the project's client or freelancer to dispute a milestone.
    The automated review runs straight away unless it is switched off.
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Open a dispute on a milestone",
        request_body=my_serializers.OpenDisputeSerializer,
        responses={
            201: my_serializers.DisputeDetailSerializer,
            422: "content_rejected",
            502: openapi.Response(description="provider_failure during automated settlement"),
            **ERROR_RESPONSES,
        }
    )
    def post(self, request, project_id, milestone_id):
        serializer = my_serializers.OpenDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = DisputeService().open_dispute(
            actor=request.user,
            project_id=project_id,
            milestone_id=milestone_id,
            reason=serializer.validated_data['reason'],
            evidence=serializer.validated_data['evidence'],
        )
        dispute.refresh_from_db()
        return Response({
            "detail": "Dispute opened.",
            "dispute": my_serializers.DisputeDetailSerializer(dispute).data
        }, status=status.HTTP_201_CREATED)


class ListDisputesAPIView(generics.ListAPIView):
    """
    List disputes.
    - Staff see all disputes.
    - Mediators and arbitrators see the disputes assigned to them.
    - Clients/Freelancers see only disputes on their projects.
    """
    serializer_class = my_serializers.DisputeDetailSerializer
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]
    filter_backends = [filters.OrderingFilter, DjangoFilterBackend]
    filterset_fields = ['status', 'resolution_phase', 'project', 'milestone']
    ordering_fields = ['created_at', 'updated_at']
    ordering = ['-updated_at']

    @swagger_auto_schema(
        operation_summary="List disputes with optional filtering",
        manual_parameters=[
            openapi.Parameter(
                'status',
                openapi.IN_QUERY,
                description="Filter disputes by status",
                type=openapi.TYPE_STRING
            ),
            openapi.Parameter(
                'resolution_phase',
                openapi.IN_QUERY,
                description="Filter disputes by resolution phase",
                type=openapi.TYPE_STRING
            ),
            openapi.Parameter(
                'ordering',
                openapi.IN_QUERY,
                description="Order results by one of: created_at, updated_at",
                type=openapi.TYPE_STRING
            ),
        ],
        responses={200: my_serializers.DisputeDetailSerializer(many=True)}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        user = self.request.user
        queryset = Dispute.objects.select_related('project', 'milestone', 'raised_by', 'mediator', 'arbitrator')
        if user.is_staff:
            return queryset

        return queryset.filter(
            Q(project__client=user) | Q(project__freelancer=user) | Q(mediator=user) | Q(arbitrator=user)
        )


class RetrieveDisputeAPIView(generics.RetrieveAPIView):
    """
    Retrieve a single dispute's details.
    Accessible only by participants (client, freelancer), the assigned panel or staff.
    """
    serializer_class = my_serializers.DisputeDetailSerializer
    permission_classes = [IsAuthenticated, IsDisputeParticipantOrPanel]
    authentication_classes = [JWTAuthentication, SessionAuthentication]
    queryset = Dispute.objects.select_related('project', 'milestone', 'raised_by', 'mediator', 'arbitrator')
    lookup_field = 'id'

    @swagger_auto_schema(
        operation_summary="Retrieve a dispute",
        responses={200: my_serializers.DisputeDetailSerializer(), 404: "Not found"}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class AdvanceDisputeAPIView(APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Move a dispute forward (review, mediation, arbitration or escalation)",
        request_body=my_serializers.AdvanceDisputeSerializer,
        responses={200: my_serializers.DisputeDetailSerializer(), 400: "Validation error", **ERROR_RESPONSES}
    )
    def post(self, request, id):
        serializer = my_serializers.AdvanceDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = DisputeService().advance_dispute(actor=request.user, dispute_id=id, **serializer.validated_data)
        dispute.refresh_from_db()
        return Response({
            "detail": f"Dispute is now {dispute.status}.",
            "dispute": my_serializers.DisputeDetailSerializer(dispute).data
        }, status=status.HTTP_200_OK)


class ResolveDisputeAPIView(APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Resolve a dispute with a split of the milestone amount",
        request_body=my_serializers.ResolveDisputeSerializer,
        responses={
            200: my_serializers.DisputeDetailSerializer(),
            422: "conservation_violation",
            502: openapi.Response(description="provider_failure; the failed transaction id is returned"),
            **ERROR_RESPONSES,
        }
    )
    def post(self, request, id):
        serializer = my_serializers.ResolveDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = DisputeService().resolve_dispute(actor=request.user, dispute_id=id, **serializer.validated_data)
        dispute.refresh_from_db()
        return Response({
            "detail": "Dispute resolved.",
            "dispute": my_serializers.DisputeDetailSerializer(dispute).data
        }, status=status.HTTP_200_OK)


class WithdrawDisputeAPIView(APIView):
    """
    Allows the user who raised a dispute to withdraw it while it is still
    awaiting review or in mediation.
    """
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Withdraw an open dispute",
        responses={200: MilestoneSerializer(), **ERROR_RESPONSES}
    )
    def post(self, request, id):
        milestone = DisputeService().withdraw_dispute(actor=request.user, dispute_id=id)
        return Response({
            "detail": "Dispute withdrawn.",
            "milestone": MilestoneSerializer(milestone).data
        }, status=status.HTTP_200_OK)


class ListCreateDisputeMessageAPIView(generics.ListCreateAPIView):
    serializer_class = my_serializers.DisputeMessageSerializer
    permission_classes = [IsAuthenticated, IsDisputeParticipantOrPanel]
    authentication_classes = [JWTAuthentication, SessionAuthentication]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['sender']

    def get_dispute(self):
        dispute = get_object_or_404(Dispute.objects.select_related('project'), id=self.kwargs['id'])
        self.check_object_permissions(self.request, dispute)
        return dispute

    @swagger_auto_schema(
        operation_summary="List the messages on a dispute",
        responses={200: my_serializers.DisputeMessageSerializer(many=True), 404: "Not found"}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @swagger_auto_schema(
        operation_summary="Post a message on a dispute",
        request_body=my_serializers.DisputeMessageSerializer,
        responses={201: my_serializers.DisputeMessageSerializer(), 422: "content_rejected", **ERROR_RESPONSES}
    )
    def post(self, request, *args, **kwargs):
        return super().post(request, *args, **kwargs)

    def get_queryset(self):
        dispute = self.get_dispute()
        return DisputeMessage.objects.filter(dispute=dispute).select_related('sender')

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = DisputeService().add_message(
            actor=request.user, dispute_id=self.kwargs['id'], message=serializer.validated_data['message'],
        )
        return Response(self.get_serializer(message).data, status=status.HTTP_201_CREATED)
