from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class PeopleConfig(AppConfig):
    """
    Persons, their contact points and guardian relationships.

    Students, parents and guardians are all ``Person`` rows; program-specific
    data hangs off ``programs.ProgramProfile``.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "madrasa.people"
    verbose_name = _("People")
