from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .api import HistoryRecordViewSet

router = DefaultRouter()
router.register(r"history/records", HistoryRecordViewSet, basename="history-records")

urlpatterns = [
    path("api/", include(router.urls)),
]
