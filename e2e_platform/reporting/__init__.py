"""Artifact bundle packaging."""

from .packager import ArtifactPackager, bundle_info, resolve_report_location

__all__ = ["ArtifactPackager", "bundle_info", "resolve_report_location"]
