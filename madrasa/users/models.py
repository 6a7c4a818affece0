from django.contrib.auth.models import AbstractUser
from django.db.models import CharField
from django.utils.translation import gettext_lazy as _


class User(AbstractUser):
    """
    Staff account for the admin dashboard and admin API.

    Students and guardians are not users; they live in ``people.Person``.
    """

    # First and last name do not cover name patterns around the globe
    name = CharField(_("Name of User"), blank=True, max_length=255)

    def __str__(self):
        return self.name or self.username
