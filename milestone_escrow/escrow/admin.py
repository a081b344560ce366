from django.contrib import admin
from .models import Escrow


@admin.register(Escrow)
class EscrowAdmin(admin.ModelAdmin):
    list_display = ('id', 'project', 'total_held', 'total_released', 'remaining', 'currency', 'updated_at')
    search_fields = ('project__title',)
    readonly_fields = ('total_held', 'total_released', 'remaining')
