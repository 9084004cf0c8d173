from django.db import models
from django.contrib.auth.models import AbstractUser


class User(AbstractUser):
    """Marketplace user; the role decides which dispatch endpoints apply."""
    ROLE_CHOICES = [
        ('customer', 'Customer'),
        ('vendor', 'Vendor'),
        ('driver', 'Driver'),
        ('admin', 'Admin'),
    ]

    role = models.CharField(max_length=10, choices=ROLE_CHOICES, default='customer')
    phone_number = models.CharField(max_length=15, blank=True)
    completed_jobs = models.IntegerField(default=0)

    class Meta:
        db_table = 'users'

    def __str__(self):
        return f"{self.username} ({self.get_role_display()})"

    @property
    def is_ops(self):
        return self.is_staff or self.role == 'admin'
