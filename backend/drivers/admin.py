from django.contrib import admin
from drivers.models import DriverProfile, DriverLocation


@admin.register(DriverProfile)
class DriverProfileAdmin(admin.ModelAdmin):
    """Admin panel for managing Driver Profiles"""

    list_display = [
        "user",
        "vehicle_number",
        "vehicle_type",
        "service_type",
        "status",
        "is_verified",
        "rating",
        "acceptance_rate",
        "completion_rate",
        "last_location_update",
    ]

    list_filter = [
        "status",
        "is_verified",
        "vehicle_type",
        "service_type",
    ]

    search_fields = [
        "user__username",
        "vehicle_number",
    ]

    readonly_fields = [
        "acceptance_rate",
        "completion_rate",
        "last_response_time_seconds",
        "last_location_update",
    ]

    ordering = ("user__username",)


@admin.register(DriverLocation)
class DriverLocationAdmin(admin.ModelAdmin):
    list_display = ("driver", "latitude", "longitude", "speed_kmh", "job", "recorded_at")
    list_filter = ("recorded_at",)
    search_fields = ("driver__user__username",)
