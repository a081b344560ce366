from django.contrib import admin
from .models import Dispute, DisputeMessage, DisputeResolution


class DisputeMessageInline(admin.TabularInline):
    model = DisputeMessage
    extra = 0
    readonly_fields = ('sender', 'message', 'created_at')


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ('id', 'project', 'milestone', 'raised_by', 'status', 'resolution_phase', 'risk_level', 'created_at')
    list_filter = ('status', 'resolution_phase', 'risk_level', 'requires_secondary_review')
    search_fields = ('reason', 'raised_by__email', 'project__title')
    inlines = [DisputeMessageInline]


@admin.register(DisputeResolution)
class DisputeResolutionAdmin(admin.ModelAdmin):
    list_display = ('dispute', 'decision', 'amount_to_freelancer', 'amount_to_client', 'decided_by', 'decided_at')
    list_filter = ('decision',)

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
