from django.urls import path

from .views import LiveLocationsAPIView, RouteGeometryAPIView, StopClustersAPIView

app_name = "livefleet"

urlpatterns = [
    path("api/live/", LiveLocationsAPIView.as_view(), name="live-locations"),
    path("api/clusters/", StopClustersAPIView.as_view(), name="stop-clusters"),
    path("api/route-geometry/", RouteGeometryAPIView.as_view(), name="route-geometry"),
]
