"""Build pipeline module.

This module handles:
- Build input validation and job records
- The strategy fallback chain (cloud CI, PWA packaging, local toolchain)
- Native project customization and toolchain execution
- Publishing packages to the tenant-scoped public directory
"""

from storeapp_builder.builds.models import BuildConfig, BuildJob

__all__ = ["BuildConfig", "BuildJob"]
