"""
Test suite for the CareBook Scheduling Service.

Contains unit tests for the scheduling services and HTTP tests for the API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
