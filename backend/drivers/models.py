from django.db import models
from django.utils import timezone
from django.conf import settings

User = settings.AUTH_USER_MODEL


class DriverProfile(models.Model):
    """Driver-specific details, availability and the inputs to candidate scoring"""
    STATUS_CHOICES = [
        ('available', 'Available'),
        ('busy', 'Busy'),
        ('offline', 'Offline'),
    ]

    VEHICLE_CHOICES = [
        ('bicycle', 'Bicycle'),
        ('motorcycle', 'Motorcycle'),
        ('car', 'Car'),
        ('van', 'Van'),
    ]

    SERVICE_CHOICES = [
        ('food_delivery', 'Food Delivery'),
        ('rideshare', 'Rideshare'),
        ('both', 'Both'),
    ]

    user = models.OneToOneField(User, on_delete=models.CASCADE, related_name='driver_profile')

    # Vehicle details
    vehicle_number = models.CharField(max_length=20, unique=True)
    vehicle_type = models.CharField(max_length=20, choices=VEHICLE_CHOICES, default='car')
    service_type = models.CharField(max_length=20, choices=SERVICE_CHOICES, default='both')

    # Status & location
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='offline')
    is_verified = models.BooleanField(default=False)
    current_latitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    current_longitude = models.DecimalField(max_digits=10, decimal_places=6, null=True, blank=True)
    last_location_update = models.DateTimeField(null=True, blank=True)

    # Performance (scoring inputs)
    rating = models.FloatField(default=5.0)
    completion_rate = models.FloatField(default=1.0)
    acceptance_rate = models.FloatField(default=1.0)
    total_jobs = models.PositiveIntegerField(default=0)
    last_response_time_seconds = models.FloatField(default=0)

    # Matching preferences (null = no limit)
    preferred_max_distance_km = models.FloatField(null=True, blank=True)
    min_job_value = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    max_job_value = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = 'driver_profiles'

    def __str__(self):
        return f"{self.user.username} - {self.vehicle_number}"

    def serves(self, service_type: str) -> bool:
        return self.service_type == 'both' or self.service_type == service_type


class DriverLocation(models.Model):
    """Recent location reports per driver (bounded audit trail)."""

    driver = models.ForeignKey(DriverProfile, on_delete=models.CASCADE, related_name='locations')
    job = models.ForeignKey(
        'jobs.MatchingRequest',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='driver_locations'
    )
    latitude = models.DecimalField(max_digits=10, decimal_places=6)
    longitude = models.DecimalField(max_digits=10, decimal_places=6)
    heading_deg = models.FloatField(null=True, blank=True)
    speed_kmh = models.FloatField(null=True, blank=True)
    recorded_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'driver_locations'
        ordering = ['-recorded_at', '-id']
        indexes = [models.Index(fields=['driver', '-recorded_at'])]

    def __str__(self):
        return f"{self.driver_id} @ ({self.latitude}, {self.longitude})"
