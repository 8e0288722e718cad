"""Storefront App Builder - package tenant storefronts as native apps.

This package orchestrates native app builds for tenant storefronts using a
tiered strategy chain: a remote CI build service, a PWA packaging service,
and a local Capacitor/Gradle build with live configuration injection.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
