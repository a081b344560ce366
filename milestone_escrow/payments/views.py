from rest_framework import generics, status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from rest_framework.authentication import SessionAuthentication
from rest_framework_simplejwt.authentication import JWTAuthentication
from django.db import transaction
from django.shortcuts import get_object_or_404
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg.utils import swagger_auto_schema

from .models import PayoutMethod, Transaction
from .serializers import (
    PayoutMethodCreateSerializer,
    PayoutMethodSerializer,
    SetPayoutMethodFlagsSerializer,
    TransactionSerializer,
)
from projects.models import Project
from projects.permissions import IsProjectParticipantOrStaff


class ProjectTransactionListView(generics.ListAPIView):
    """Every money movement recorded against a project, oldest first."""
    serializer_class = TransactionSerializer
    permission_classes = [IsAuthenticated, IsProjectParticipantOrStaff]
    authentication_classes = [JWTAuthentication, SessionAuthentication]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['type', 'status', 'milestone', 'dispute']

    @swagger_auto_schema(
        operation_summary="List a project's transactions",
        responses={200: TransactionSerializer(many=True)}
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        project = get_object_or_404(Project, id=self.kwargs['project_id'])
        return Transaction.objects.filter(project=project)


class PayoutMethodListCreateView(APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="List the current user's payout methods",
        responses={200: PayoutMethodSerializer(many=True)}
    )
    def get(self, request):
        methods = PayoutMethod.objects.filter(user=request.user).order_by('-is_default', '-created_at')
        data = PayoutMethodSerializer(methods, many=True).data
        return Response(data)

    @swagger_auto_schema(
        operation_summary="Add a payout method",
        request_body=PayoutMethodCreateSerializer,
        responses={201: PayoutMethodSerializer, 400: "Validation error"}
    )
    def post(self, request):
        serializer = PayoutMethodCreateSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)
        method = serializer.save()
        return Response(PayoutMethodSerializer(method).data, status=status.HTTP_201_CREATED)


class PayoutMethodDetailView(APIView):
    permission_classes = [IsAuthenticated]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Change the default or active flag of a payout method",
        request_body=SetPayoutMethodFlagsSerializer,
        responses={200: PayoutMethodSerializer, 404: "Not found"}
    )
    def patch(self, request, method_id):
        method = get_object_or_404(PayoutMethod, id=method_id, user=request.user)
        serializer = SetPayoutMethodFlagsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        with transaction.atomic():
            if serializer.validated_data.get('is_default'):
                PayoutMethod.objects.filter(user=request.user, is_default=True).exclude(id=method.id).update(is_default=False)
            for field, value in serializer.validated_data.items():
                setattr(method, field, value)
            method.save()
        return Response(PayoutMethodSerializer(method).data)

    @swagger_auto_schema(
        operation_summary="Deactivate a payout method",
        responses={204: "Deactivated", 404: "Not found"}
    )
    def delete(self, request, method_id):
        # Transactions keep pointing at users, not methods, but the audit trail keeps the row.
        method = get_object_or_404(PayoutMethod, id=method_id, user=request.user)
        method.is_active = False
        method.is_default = False
        method.save(update_fields=['is_active', 'is_default', 'updated_at'])
        return Response(status=status.HTTP_204_NO_CONTENT)
