"""
Services Package
================
Shared state for the web application.
"""

from .state import AppState, app_state

__all__ = ['AppState', 'app_state']
