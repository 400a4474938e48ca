from django.apps import AppConfig
from django.utils.translation import gettext_lazy as _


class ResumesConfig(AppConfig):
    """
    Résumés are edited and rendered elsewhere; this app only carries the
    ownership and export-purchase state that billing reads and writes.
    """

    default_auto_field = "django.db.models.BigAutoField"
    name = "cvforge.resumes"
    verbose_name = _("Résumés")
