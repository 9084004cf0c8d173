from rest_framework import serializers

from .models import User


class UserBasicSerializer(serializers.ModelSerializer):
    """Public user info embedded in job and driver payloads."""

    class Meta:
        model = User
        fields = ["id", "username", "role", "phone_number"]
        read_only_fields = fields
