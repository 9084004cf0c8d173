from django.db import models
from django.db.models import Q
from django.conf import settings


class MatchingRequest(models.Model):
    """One order or ride that needs a driver (a "job")."""

    KIND_CHOICES = [
        ('order', 'Order'),
        ('ride', 'Ride'),
    ]

    SERVICE_CHOICES = [
        ('food_delivery', 'Food Delivery'),
        ('rideshare', 'Rideshare'),
    ]

    STATUS_CHOICES = [
        ('searching', 'Looking for a driver'),
        ('assigned', 'Driver assigned'),
        ('driver_arrived', 'Driver arrived'),
        ('in_progress', 'In progress'),
        ('delivered', 'Delivered'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('unmatched', 'No driver found'),
    ]

    TERMINAL_STATUSES = ('delivered', 'completed', 'cancelled')
    ACTIVE_STATUSES = ('assigned', 'driver_arrived', 'in_progress')

    kind = models.CharField(max_length=10, choices=KIND_CHOICES)
    customer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='jobs'
    )
    driver = models.ForeignKey(
        'drivers.DriverProfile',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='jobs'
    )

    # Pickup (vendor for orders, passenger for rides)
    pickup_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    pickup_address = models.TextField(blank=True, default='')

    # Destination (required for rides, delivery point for orders)
    destination_latitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    destination_longitude = models.DecimalField(max_digits=9, decimal_places=6, null=True, blank=True)
    destination_address = models.TextField(blank=True, default='')

    service_type = models.CharField(max_length=20, choices=SERVICE_CHOICES)
    estimated_value = models.DecimalField(max_digits=10, decimal_places=2, null=True, blank=True)
    priority = models.PositiveSmallIntegerField(default=5)

    # Requirements
    min_rating = models.FloatField(null=True, blank=True)
    max_distance_km = models.FloatField(null=True, blank=True)
    vehicle_type = models.CharField(max_length=20, blank=True, default='')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='searching')
    matching_pass = models.PositiveIntegerField(default=0)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    assigned_at = models.DateTimeField(null=True, blank=True)
    arrived_at = models.DateTimeField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    cancellation_reason = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'matching_requests'
        ordering = ['-created_at']

    def __str__(self):
        return f"Job #{self.id} ({self.kind}) - {self.status}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    @property
    def pickup_point(self):
        return (float(self.pickup_latitude), float(self.pickup_longitude))

    @property
    def destination_point(self):
        if self.destination_latitude is None or self.destination_longitude is None:
            return None
        return (float(self.destination_latitude), float(self.destination_longitude))


class RankedCandidate(models.Model):
    """Ranked driver list of one matching pass; offers walk it in rank order."""

    job = models.ForeignKey(MatchingRequest, on_delete=models.CASCADE, related_name='candidates')
    driver = models.ForeignKey('drivers.DriverProfile', on_delete=models.CASCADE, related_name='+')
    matching_pass = models.PositiveIntegerField()
    rank = models.PositiveIntegerField()  # 0 = best

    distance_km = models.FloatField()
    eta_minutes = models.PositiveIntegerField()
    distance_score = models.FloatField()
    rating_score = models.FloatField()
    completion_rate_score = models.FloatField()
    response_time_score = models.FloatField()
    availability_score = models.FloatField()
    total_score = models.FloatField()

    offered_at = models.DateTimeField(null=True, blank=True)
    skipped = models.BooleanField(default=False)

    class Meta:
        db_table = 'ranked_candidates'
        ordering = ['matching_pass', 'rank']
        constraints = [
            models.UniqueConstraint(
                fields=['job', 'matching_pass', 'rank'],
                name='unique_candidate_rank'
            )
        ]

    def __str__(self):
        return f"Job {self.job_id} pass {self.matching_pass} #{self.rank} -> {self.driver_id}"


class Assignment(models.Model):
    """An offer of one job to one driver."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
        ('expired', 'Expired'),
        ('cancelled', 'Cancelled'),
    ]

    job = models.ForeignKey(MatchingRequest, on_delete=models.CASCADE, related_name='assignments')
    driver = models.ForeignKey('drivers.DriverProfile', on_delete=models.CASCADE, related_name='assignments')

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    priority = models.PositiveSmallIntegerField(default=1)
    rank = models.PositiveIntegerField(default=0)
    matching_pass = models.PositiveIntegerField(default=1)

    distance_km = models.FloatField()
    eta_minutes = models.PositiveIntegerField()
    total_score = models.FloatField(default=0)

    created_at = models.DateTimeField()
    expires_at = models.DateTimeField()
    responded_at = models.DateTimeField(null=True, blank=True)
    response_time_seconds = models.FloatField(null=True, blank=True)
    rejection_reason = models.TextField(blank=True, default='')

    class Meta:
        db_table = 'assignments'
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['job'],
                condition=Q(status='pending'),
                name='one_pending_assignment_per_job'
            ),
            models.UniqueConstraint(
                fields=['driver'],
                condition=Q(status='pending'),
                name='one_pending_assignment_per_driver'
            ),
        ]
        indexes = [models.Index(fields=['status', 'expires_at'])]

    def __str__(self):
        return f"Assignment #{self.id} - Job {self.job_id} -> Driver {self.driver_id} ({self.status})"


class ReassignmentQueueItem(models.Model):
    """Retry record for a job whose offers all failed."""

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('failed', 'Failed'),
        ('resolved', 'Resolved'),
    ]

    job = models.OneToOneField(MatchingRequest, on_delete=models.CASCADE, related_name='reassignment')
    kind = models.CharField(max_length=10, choices=MatchingRequest.KIND_CHOICES)
    attempt = models.PositiveIntegerField(default=1)
    max_attempts = models.PositiveIntegerField(default=3)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    priority = models.PositiveSmallIntegerField(default=5)
    last_error = models.TextField(blank=True, default='')
    original_driver = models.ForeignKey(
        'drivers.DriverProfile',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )

    next_attempt_at = models.DateTimeField()
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'reassignment_queue'
        ordering = ['-priority', 'created_at']

    def __str__(self):
        return f"Reassign Job {self.job_id} attempt {self.attempt}/{self.max_attempts} ({self.status})"


class Geofence(models.Model):
    """Circular arrival trigger around a job's pickup or delivery point."""

    TYPE_CHOICES = [
        ('pickup', 'Pickup'),
        ('delivery', 'Delivery'),
    ]

    job = models.ForeignKey(MatchingRequest, on_delete=models.CASCADE, related_name='geofences')
    type = models.CharField(max_length=10, choices=TYPE_CHOICES)
    center_latitude = models.DecimalField(max_digits=9, decimal_places=6)
    center_longitude = models.DecimalField(max_digits=9, decimal_places=6)
    radius_meters = models.PositiveIntegerField()
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    triggered_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'geofences'
        ordering = ['created_at']

    def __str__(self):
        return f"{self.type} fence for Job {self.job_id} ({'active' if self.is_active else 'inactive'})"

    @property
    def center(self):
        return (float(self.center_latitude), float(self.center_longitude))
