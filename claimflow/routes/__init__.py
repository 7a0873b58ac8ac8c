# ==== ROUTES PACKAGE ==== #

"""
Routes package for API endpoints.

This package contains the FastAPI routers for the employee, manager and
finance claim endpoints.
"""
