from rest_framework import serializers
from django.contrib.auth import get_user_model

from .models import ActivityLogEntry, Milestone, Project

User = get_user_model()


class EscrowSnapshotSerializer(serializers.Serializer):
    total_held = serializers.IntegerField(read_only=True)
    total_released = serializers.IntegerField(read_only=True)
    remaining = serializers.IntegerField(read_only=True)
    status = serializers.CharField(read_only=True)


class ProjectSerializer(serializers.ModelSerializer):
    client = serializers.StringRelatedField()
    freelancer = serializers.StringRelatedField()
    escrow = EscrowSnapshotSerializer(read_only=True)
    milestone_ids = serializers.SerializerMethodField()

    class Meta:
        model = Project
        fields = [
            'id', 'title', 'description', 'client', 'freelancer', 'budget', 'currency',
            'fee_rate', 'auto_approve_days', 'status', 'escrow', 'milestone_ids',
            'created_at', 'updated_at', 'completed_at',
        ]
        read_only_fields = fields

    def get_milestone_ids(self, obj):
        return list(obj.milestones.values_list('id', flat=True))


class CreateProjectSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    budget = serializers.IntegerField(min_value=1, help_text="Budget in minor currency units")
    currency = serializers.CharField(max_length=3, default='USD')
    fee_rate = serializers.DecimalField(max_digits=5, decimal_places=4, min_value=0, max_value=1,
                                        required=False, allow_null=True, default=None)
    auto_approve_days = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)


class AssignFreelancerSerializer(serializers.Serializer):
    freelancer_id = serializers.PrimaryKeyRelatedField(queryset=User.objects.filter(is_active=True), source='freelancer')


class FundEscrowSerializer(serializers.Serializer):
    amount = serializers.IntegerField(min_value=1, help_text="Amount in minor currency units")
    provider_reference = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class MilestoneSerializer(serializers.ModelSerializer):
    auto_approve_at = serializers.DateTimeField(read_only=True)

    class Meta:
        model = Milestone
        fields = [
            'id', 'project', 'position', 'title', 'description', 'amount', 'currency', 'status',
            'deadline', 'acceptance_criteria', 'deliverables', 'submission_notes', 'revision_history',
            'started_at', 'submitted_at', 'approved_at', 'auto_approve_at', 'created_at', 'updated_at',
        ]
        read_only_fields = fields


class CreateMilestoneSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    amount = serializers.IntegerField(min_value=1, help_text="Amount in minor currency units")
    currency = serializers.CharField(max_length=3, required=False, allow_null=True, default=None)
    deadline = serializers.DateTimeField(required=False, allow_null=True, default=None)
    acceptance_criteria = serializers.CharField(required=False, allow_blank=True, default='')


class SubmitMilestoneSerializer(serializers.Serializer):
    deliverables = serializers.ListField(child=serializers.CharField(max_length=2048), required=False, default=list)
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class RequestRevisionSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class ActivityLogEntrySerializer(serializers.ModelSerializer):
    actor = serializers.SerializerMethodField()

    class Meta:
        model = ActivityLogEntry
        fields = ['id', 'action', 'actor', 'metadata', 'timestamp']
        read_only_fields = fields

    def get_actor(self, obj):
        return obj.actor.email if obj.actor_id else 'system'
