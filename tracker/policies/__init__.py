"""
Authorization policies for the progress tracker backend.

This package provides the progress report decision function and the FastAPI
dependencies that resolve the acting user, ensuring consistent access control
across all routes.
"""
