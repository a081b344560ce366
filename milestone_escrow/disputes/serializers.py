from rest_framework import serializers
from django.contrib.auth import get_user_model

from .models import Dispute, DisputeMessage, DisputeResolution
from .services import DisputeAction

User = get_user_model()


class EvidenceItemSerializer(serializers.Serializer):
    description = serializers.CharField(max_length=2000)
    url = serializers.URLField(required=False, allow_blank=True)


class OpenDisputeSerializer(serializers.Serializer):
    reason = serializers.CharField()
    evidence = EvidenceItemSerializer(many=True, required=False, default=list)


class DisputeResolutionSerializer(serializers.ModelSerializer):
    decided_by = serializers.SerializerMethodField()

    class Meta:
        model = DisputeResolution
        fields = ['decision', 'amount_to_freelancer', 'amount_to_client', 'reason', 'decided_by', 'decided_at']
        read_only_fields = fields

    def get_decided_by(self, obj):
        return obj.decided_by.email if obj.decided_by_id else 'automated review'


class DisputeDetailSerializer(serializers.ModelSerializer):
    """
    Serializer for retrieving a single dispute with its review outcome and,
    once resolved, the final resolution.
    """
    raised_by = serializers.StringRelatedField()
    mediator = serializers.StringRelatedField()
    arbitrator = serializers.StringRelatedField()
    resolution = serializers.SerializerMethodField()

    class Meta:
        model = Dispute
        fields = [
            'id', 'project', 'milestone', 'raised_by', 'reason', 'amount_in_dispute', 'evidence', 'status', 'resolution_phase',
            'milestone_status_before', 'mediator', 'arbitrator', 'escalation_reason',
            'review_confidence', 'review_key_issues', 'review_recommendation', 'review_reasoning', 'reviewed_at',
            'risk_score', 'risk_level', 'risk_factors', 'requires_secondary_review',
            'resolution', 'created_at', 'updated_at', 'resolved_at', 'withdrawn_at',
        ]
        read_only_fields = fields

    def get_resolution(self, obj):
        resolution = DisputeResolution.objects.filter(dispute=obj).first()
        if resolution is None:
            return None
        return DisputeResolutionSerializer(resolution).data


class AdvanceDisputeSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=DisputeAction.CHOICES)
    assignee_id = serializers.PrimaryKeyRelatedField(
        queryset=User.objects.filter(is_active=True), source='assignee', required=False, allow_null=True, default=None,
    )
    note = serializers.CharField(required=False, allow_blank=True, default='')


class ResolveDisputeSerializer(serializers.Serializer):
    amount_to_freelancer = serializers.IntegerField(min_value=0, help_text="Minor currency units")
    amount_to_client = serializers.IntegerField(min_value=0, help_text="Minor currency units")
    reason = serializers.CharField(required=False, allow_blank=True, default='')


class DisputeMessageSerializer(serializers.ModelSerializer):
    sender = serializers.StringRelatedField(read_only=True)

    class Meta:
        model = DisputeMessage
        fields = ['id', 'dispute', 'sender', 'message', 'created_at']
        read_only_fields = ['id', 'dispute', 'sender', 'created_at']
