from rest_framework import status
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAdminUser
from rest_framework.authentication import SessionAuthentication
from rest_framework_simplejwt.authentication import JWTAuthentication
from django.contrib.auth import get_user_model
from django.shortcuts import get_object_or_404
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

from .services import RiskGate

User = get_user_model()


class UserRiskAssessmentAPIView(APIView):
    """Current fraud risk of a user account. Staff only."""
    permission_classes = [IsAdminUser]
    authentication_classes = [JWTAuthentication, SessionAuthentication]

    @swagger_auto_schema(
        operation_summary="Assess a user's fraud risk",
        responses={
            200: openapi.Response(
                description="Risk assessment",
                schema=openapi.Schema(
                    type=openapi.TYPE_OBJECT,
                    properties={
                        'risk_score': openapi.Schema(type=openapi.TYPE_INTEGER),
                        'risk_level': openapi.Schema(type=openapi.TYPE_STRING),
                        'risk_factors': openapi.Schema(type=openapi.TYPE_ARRAY, items=openapi.Schema(type=openapi.TYPE_STRING)),
                        'requires_secondary_review': openapi.Schema(type=openapi.TYPE_BOOLEAN),
                    },
                ),
            ),
            403: "forbidden",
            404: "not_found",
        }
    )
    def get(self, request, user_id):
        user = get_object_or_404(User, id=user_id)
        gate = RiskGate()
        assessment = gate.assess_user(user)
        data = assessment.as_dict()
        data['requires_secondary_review'] = gate.is_flagged(assessment)
        return Response(data, status=status.HTTP_200_OK)
