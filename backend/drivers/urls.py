from django.urls import path
from .views import (
    DriverProfileView,
    DriverStatusView,
    DriverLocationUpdateView,
    DriverCurrentOfferView,
    DriverCurrentJobView,
    DriverJobHistoryView,
)

urlpatterns = [
    path("profile/", DriverProfileView.as_view(), name="driver-profile"),
    path("status/", DriverStatusView.as_view(), name="driver-status"),
    path("location/", DriverLocationUpdateView.as_view(), name="driver-location"),
    path("offers/current/", DriverCurrentOfferView.as_view(), name="driver-current-offer"),
    path("current-job/", DriverCurrentJobView.as_view(), name="driver-current-job"),
    path("history/", DriverJobHistoryView.as_view(), name="driver-history"),
]
