from rest_framework import serializers
from drivers.models import DriverProfile
from accounts.serializers import UserBasicSerializer


class DriverProfileSerializer(serializers.ModelSerializer):
    """
    Full driver profile serializer
    """
    user = UserBasicSerializer(read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "user",
            "vehicle_number",
            "vehicle_type",
            "service_type",
            "status",
            "is_verified",
            "rating",
            "completion_rate",
            "acceptance_rate",
            "total_jobs",
            "last_response_time_seconds",
            "preferred_max_distance_km",
            "min_job_value",
            "max_job_value",
            "current_latitude",
            "current_longitude",
            "last_location_update",
        ]
        read_only_fields = [
            "id", "status", "is_verified", "rating", "completion_rate", "acceptance_rate",
            "total_jobs", "last_response_time_seconds", "current_latitude",
            "current_longitude", "last_location_update",
        ]


class DriverBasicSerializer(serializers.ModelSerializer):
    """
    Lite version of driver info for job details (sent to customers).
    """
    username = serializers.CharField(source="user.username", read_only=True)
    phone_number = serializers.CharField(source="user.phone_number", read_only=True)

    class Meta:
        model = DriverProfile
        fields = [
            "id",
            "username",
            "phone_number",
            "vehicle_number",
            "vehicle_type",
            "rating",
            "current_latitude",
            "current_longitude",
        ]


class DriverStatusSerializer(serializers.Serializer):
    """
    Serializer for updating driver availability (available/offline).
    """
    status = serializers.ChoiceField(choices=["available", "offline"])


class LocationUpdateSerializer(serializers.Serializer):
    """
    Serializer for a driver GPS report.
    """
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    heading_deg = serializers.FloatField(min_value=0, max_value=360, required=False, allow_null=True)
    speed_kmh = serializers.FloatField(min_value=0, required=False, allow_null=True)
    job_id = serializers.IntegerField(required=False, allow_null=True)
