"""
Web Package
===========
Flask HTTP layer over the profile and prompt services.
"""

from .app import create_app, run_server

__all__ = ['create_app', 'run_server']
