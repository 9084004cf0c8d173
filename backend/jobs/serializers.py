from rest_framework import serializers

from accounts.serializers import UserBasicSerializer
from drivers.serializers import DriverBasicSerializer
from .models import MatchingRequest, Assignment, ReassignmentQueueItem, Geofence


class JobSerializer(serializers.ModelSerializer):
    """Serializer for jobs (orders and rides)"""
    customer = UserBasicSerializer(read_only=True)
    driver = DriverBasicSerializer(read_only=True)

    class Meta:
        model = MatchingRequest
        fields = ['id', 'kind', 'customer', 'driver', 'service_type',
                  'pickup_latitude', 'pickup_longitude', 'pickup_address',
                  'destination_latitude', 'destination_longitude', 'destination_address',
                  'estimated_value', 'priority', 'min_rating', 'max_distance_km', 'vehicle_type',
                  'status', 'matching_pass', 'created_at', 'assigned_at', 'arrived_at',
                  'started_at', 'finished_at', 'cancelled_at', 'cancellation_reason']
        read_only_fields = fields


class JobCreateSerializer(serializers.Serializer):
    """Input for submitting a job"""
    kind = serializers.ChoiceField(choices=MatchingRequest.KIND_CHOICES)
    service_type = serializers.ChoiceField(choices=MatchingRequest.SERVICE_CHOICES, required=False)
    pickup_latitude = serializers.FloatField(min_value=-90, max_value=90)
    pickup_longitude = serializers.FloatField(min_value=-180, max_value=180)
    pickup_address = serializers.CharField(required=False, allow_blank=True)
    destination_latitude = serializers.FloatField(min_value=-90, max_value=90, required=False, allow_null=True)
    destination_longitude = serializers.FloatField(min_value=-180, max_value=180, required=False, allow_null=True)
    destination_address = serializers.CharField(required=False, allow_blank=True)
    estimated_value = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    priority = serializers.IntegerField(min_value=1, max_value=10, required=False)
    min_rating = serializers.FloatField(min_value=0, max_value=5, required=False, allow_null=True)
    max_distance_km = serializers.FloatField(min_value=0.1, required=False, allow_null=True)
    vehicle_type = serializers.CharField(required=False, allow_blank=True)

    def validate(self, attrs):
        if attrs['kind'] == 'ride' and (
            attrs.get('destination_latitude') is None or attrs.get('destination_longitude') is None
        ):
            raise serializers.ValidationError({'destination': 'Rides need a destination'})
        return attrs


class JobCancelSerializer(serializers.Serializer):
    """Serializer for job cancellation"""
    reason = serializers.CharField(required=False, allow_blank=True)


class MatchingPassSerializer(serializers.Serializer):
    """Input for the ops find/assign endpoints"""
    job_id = serializers.IntegerField()
    radius_km = serializers.FloatField(min_value=0.1, required=False)
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False)


class AssignmentResponseSerializer(serializers.Serializer):
    response = serializers.ChoiceField(choices=['accept', 'reject'])
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)


class AssignmentSerializer(serializers.ModelSerializer):
    job = JobSerializer(read_only=True)
    seconds_remaining = serializers.SerializerMethodField()

    class Meta:
        model = Assignment
        fields = ['id', 'job', 'driver', 'status', 'priority', 'rank', 'matching_pass',
                  'distance_km', 'eta_minutes', 'total_score', 'created_at', 'expires_at',
                  'responded_at', 'response_time_seconds', 'rejection_reason', 'seconds_remaining']
        read_only_fields = fields

    def get_seconds_remaining(self, obj):
        now = self.context.get('now')
        if obj.status != 'pending' or now is None:
            return 0
        return max(0, int((obj.expires_at - now).total_seconds()))


class ReassignmentQueueItemSerializer(serializers.ModelSerializer):
    job_status = serializers.CharField(source='job.status', read_only=True)

    class Meta:
        model = ReassignmentQueueItem
        fields = ['id', 'job', 'job_status', 'kind', 'attempt', 'max_attempts', 'status',
                  'priority', 'last_error', 'original_driver', 'next_attempt_at',
                  'processed_at', 'created_at', 'updated_at']
        read_only_fields = fields


class GeofenceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Geofence
        fields = ['id', 'job', 'type', 'center_latitude', 'center_longitude',
                  'radius_meters', 'is_active', 'created_at', 'triggered_at']
        read_only_fields = fields
