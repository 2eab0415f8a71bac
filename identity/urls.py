from django.urls import path

from .views import HealthCheckView, IdentifyAPIView

urlpatterns = [
    path("identify", IdentifyAPIView.as_view(), name="identify"),
    path("health", HealthCheckView.as_view(), name="health"),
]
