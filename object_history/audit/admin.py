from django.contrib import admin
from .models import HistoryRecord, HistoryDetail


class HistoryDetailInline(admin.TabularInline):
    model = HistoryDetail
    fields = ("field_name", "old_value", "new_value", "created_at")
    readonly_fields = fields
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(HistoryRecord)
class HistoryRecordAdmin(admin.ModelAdmin):
    list_display = ("created_at", "object_type", "object_id", "user_id", "admin_id")
    list_filter = ("object_type",)
    search_fields = ("object_type", "object_id")
    readonly_fields = ("object_type", "object_id", "user_id", "admin_id", "created_at")
    inlines = [HistoryDetailInline]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
