"""Tells what to show in the Django admin interface for jobs app"""

from django.contrib import admin
from .models import MatchingRequest, RankedCandidate, Assignment, ReassignmentQueueItem, Geofence


@admin.register(MatchingRequest)
class MatchingRequestAdmin(admin.ModelAdmin):
    """Job admin"""
    list_display = ['id', 'kind', 'customer', 'driver', 'status', 'priority', 'matching_pass', 'created_at', 'assigned_at']
    list_filter = ['kind', 'status', 'service_type', 'created_at']
    search_fields = ['customer__username', 'driver__user__username', 'pickup_address']
    readonly_fields = ['created_at', 'assigned_at', 'arrived_at', 'started_at', 'finished_at', 'cancelled_at']
    date_hierarchy = 'created_at'


@admin.register(RankedCandidate)
class RankedCandidateAdmin(admin.ModelAdmin):
    list_display = ("job", "matching_pass", "rank", "driver", "distance_km", "total_score", "offered_at", "skipped")
    list_filter = ("skipped",)
    search_fields = ("job__id",)


@admin.register(Assignment)
class AssignmentAdmin(admin.ModelAdmin):
    list_display = ("id", "job", "driver", "status", "rank", "distance_km", "total_score", "created_at", "expires_at")
    list_filter = ("status",)
    search_fields = ("job__id", "driver__user__username")


@admin.register(ReassignmentQueueItem)
class ReassignmentQueueItemAdmin(admin.ModelAdmin):
    list_display = ("job", "kind", "status", "attempt", "max_attempts", "priority", "next_attempt_at")
    list_filter = ("status", "kind")
    search_fields = ("job__id",)


@admin.register(Geofence)
class GeofenceAdmin(admin.ModelAdmin):
    list_display = ("job", "type", "radius_meters", "is_active", "created_at", "triggered_at")
    list_filter = ("type", "is_active")
