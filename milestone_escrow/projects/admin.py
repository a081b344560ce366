from django.contrib import admin
from .models import ActivityLogEntry, Milestone, Project


class MilestoneInline(admin.TabularInline):
    model = Milestone
    extra = 0
    fields = ('position', 'title', 'amount', 'currency', 'status', 'deadline')
    readonly_fields = ('status',)


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'client', 'freelancer', 'budget', 'currency', 'status', 'created_at')
    list_filter = ('status', 'currency')
    search_fields = ('title', 'client__email', 'freelancer__email')
    inlines = [MilestoneInline]


@admin.register(Milestone)
class MilestoneAdmin(admin.ModelAdmin):
    list_display = ('id', 'project', 'position', 'title', 'amount', 'status', 'submitted_at', 'approved_at')
    list_filter = ('status',)
    search_fields = ('title', 'project__title')


@admin.register(ActivityLogEntry)
class ActivityLogEntryAdmin(admin.ModelAdmin):
    list_display = ('id', 'project', 'action', 'actor', 'timestamp')
    list_filter = ('action',)
    search_fields = ('project__title', 'actor__email')

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
