from rest_framework import permissions, serializers, viewsets

from object_history.core.actors import is_history_admin
from .models import HistoryDetail, HistoryRecord


class IsHistoryAdmin(permissions.BasePermission):
    def has_permission(self, request, view):
        return is_history_admin(request.user)


class HistoryDetailSerializer(serializers.ModelSerializer):
    class Meta:
        model = HistoryDetail
        fields = ["id", "field_name", "old_value", "new_value", "created_at"]


class HistoryRecordSerializer(serializers.ModelSerializer):
    details = HistoryDetailSerializer(many=True, read_only=True)

    class Meta:
        model = HistoryRecord
        fields = ["id", "object_type", "object_id", "user_id", "admin_id", "created_at", "details"]


class HistoryRecordViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = HistoryRecordSerializer
    permission_classes = [permissions.IsAuthenticated, IsHistoryAdmin]
    filter_params = ("object_type", "object_id", "user_id", "admin_id")

    def get_queryset(self):
        qs = HistoryRecord.objects.prefetch_related("details").order_by("-created_at", "-id")
        for name in self.filter_params:
            value = self.request.query_params.get(name)
            if value in (None, ""):
                continue
            if name != "object_type" and not value.isdigit():
                raise serializers.ValidationError({name: "Expected an integer."})
            qs = qs.filter(**{name: value})
        return qs
