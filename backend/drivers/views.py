from django.utils import timezone
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from drivers.models import DriverProfile
from drivers.serializers import (
    DriverProfileSerializer,
    DriverStatusSerializer,
    LocationUpdateSerializer,
)
from jobs.models import Assignment, MatchingRequest
from jobs.serializers import AssignmentSerializer, JobSerializer
from services.dispatch import DispatchError, LocationUpdate, build_coordinator

from drivers import services

# Utility: Ensure request.user is a driver
def require_driver(user):
    if user.role != "driver":
        return False, Response({"error": "Only drivers allowed"}, status=403)
    try:
        profile = user.driver_profile
        return True, profile
    except DriverProfile.DoesNotExist:
        return False, Response({"error": "Driver profile not found"}, status=404)


class DriverProfileView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile  # Response object

        serializer = DriverProfileSerializer(profile, context={"request": request})
        return Response(serializer.data)

    def patch(self, request):
        """Update vehicle details and matching preferences."""
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = DriverProfileSerializer(profile, data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        return Response(serializer.data, status=200)


class DriverStatusView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response({"status": profile.status})

    def put(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = DriverStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        new_status = serializer.validated_data["status"]

        try:
            services.update_driver_status(profile, new_status)
        except services.DriverStatusError as e:
            return Response({"error": str(e)}, status=409)

        return Response({
            "message": f"Status updated to {new_status}",
            "status": new_status
        })


class DriverLocationUpdateView(APIView):
    """Location ingress: stores the report and runs geofence checks."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        return Response({
            "latitude": float(profile.current_latitude) if profile.current_latitude is not None else None,
            "longitude": float(profile.current_longitude) if profile.current_longitude is not None else None,
            "last_updated": profile.last_location_update,
            "status": profile.status,
        })

    def post(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        serializer = LocationUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        update = LocationUpdate(
            driver_id=profile.id,
            latitude=data["latitude"],
            longitude=data["longitude"],
            heading_deg=data.get("heading_deg"),
            speed_kmh=data.get("speed_kmh"),
            timestamp=timezone.now(),
            active_job_id=data.get("job_id"),
        )
        try:
            fired = build_coordinator().record_location(update)
        except DispatchError as e:
            return Response({"error": str(e)}, status=400)

        return Response({
            "message": "Location updated",
            "latitude": update.latitude,
            "longitude": update.longitude,
            "status": profile.status,
            "geofence_events": fired,
        })


class DriverCurrentOfferView(APIView):
    """Polling fallback for the driver's pending offer, with a countdown."""
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        now = timezone.now()
        offer = (
            Assignment.objects
            .select_related("job", "job__customer", "job__driver__user")
            .filter(driver=profile, status="pending", expires_at__gt=now)
            .first()
        )
        if not offer:
            return Response({"has_offer": False, "message": "No pending offer"})

        serializer = AssignmentSerializer(offer, context={"request": request, "now": now})
        return Response({"has_offer": True, "offer": serializer.data})


class DriverCurrentJobView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        job = MatchingRequest.objects.filter(
            driver=profile, status__in=MatchingRequest.ACTIVE_STATUSES
        ).first()
        if not job:
            return Response({"message": "No active job"}, status=404)

        serializer = JobSerializer(job, context={"request": request})
        return Response(serializer.data)


class DriverJobHistoryView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        ok, profile = require_driver(request.user)
        if ok is False:
            return profile

        finished = MatchingRequest.objects.filter(driver=profile, status__in=["delivered", "completed"])
        serializer = JobSerializer(finished, many=True, context={"request": request})

        return Response({"count": finished.count(), "jobs": serializer.data})
