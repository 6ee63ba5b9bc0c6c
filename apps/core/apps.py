from django.apps import AppConfig
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

logger = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.core'
    verbose_name = 'Core'

    WEAK_SECRET_PATTERNS = [
        'your-secret-key',
        'change-me',
        'insecure',
        '12345',
        'password',
    ]

    def ready(self):
        """
        Perform startup validation checks when Django initializes.

        Only runs for serving processes; management commands such as
        migrate and shell start without full production configuration.
        """
        import sys
        if 'runserver' not in sys.argv and 'gunicorn' not in sys.argv[0]:
            return

        self._validate_security_settings()
        logger.info("Startup security validations passed")

    def _validate_security_settings(self):
        """Validate general security settings."""
        debug = getattr(settings, 'DEBUG', False)
        secret_key = getattr(settings, 'SECRET_KEY', None)

        if not secret_key:
            raise ImproperlyConfigured(
                "SECRET_KEY must be set in environment variables. "
                "Generate with: "
                "python -c \"import secrets; print(secrets.token_urlsafe(50))\""
            )

        if len(secret_key) < 50:
            logger.warning(
                f"SECRET_KEY is shorter than recommended (current: {len(secret_key)}, recommended: 50+)"
            )

        if debug:
            return

        secret_lower = secret_key.lower()
        for pattern in self.WEAK_SECRET_PATTERNS:
            if pattern in secret_lower:
                raise ImproperlyConfigured(
                    f"SECRET_KEY appears to be a default or weak value (contains '{pattern}'). "
                    f"Generate a strong key with: "
                    f"python -c \"import secrets; print(secrets.token_urlsafe(50))\""
                )

        if not getattr(settings, 'SECURE_SSL_REDIRECT', False):
            logger.warning(
                "SECURE_SSL_REDIRECT is not enabled in production. "
                "HTTPS should be enforced for security."
            )
