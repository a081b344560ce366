from django.contrib import admin
from .models import PayoutMethod, Transaction


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    list_display = ('id', 'project', 'milestone', 'dispute', 'type', 'amount', 'platform_fee', 'status', 'provider', 'created_at')
    list_filter = ('type', 'status', 'provider')
    search_fields = ('provider_transaction_id', 'from_user__email', 'to_user__email')

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(PayoutMethod)
class PayoutMethodAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'provider', 'account_reference', 'is_default', 'is_verified', 'is_active', 'created_at')
    list_filter = ('provider', 'is_default', 'is_verified', 'is_active')
    search_fields = ('user__email', 'account_reference')
