"""Django app configuration for the registration app."""

from django.apps import AppConfig


class DjangoExpoRegistrationConfig(AppConfig):
    """Configuration for the registration app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "django_expo.registration"
    label = "expo_registration"
    verbose_name = "Ticket Registration"
