"""
Telemetry Module
================

Observability for the storefront shell.

Components:
- sentry.py: Error tracking for failures the visitor engine degrades around

Usage:
    from storefront.telemetry import init_observability

    # Initialize on app startup
    init_observability(settings)
"""

from storefront.telemetry.sentry import capture_exception, init_sentry


def init_observability(settings) -> dict:
    """
    Initialize all observability tools.

    Returns:
        Dict with status of each tool initialization, e.g. {"sentry": False}
    """
    return {
        "sentry": init_sentry(
            settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            release=settings.RELEASE_VERSION,
        ),
    }


__all__ = [
    "init_observability",
    "init_sentry",
    "capture_exception",
]
