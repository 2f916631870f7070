"""Profile CRUD and activation."""

from .service import DiagnosticsRecorder, ProfileService

__all__ = ["DiagnosticsRecorder", "ProfileService"]
