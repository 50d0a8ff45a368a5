"""
CareBook Scheduling Service

A FastAPI-based scheduling and booking core for healthcare appointments:
doctor schedules, live slot availability, conflict-free booking and the
appointment lifecycle.
"""

__version__ = "1.0.0"
