"""
Test suite for the Clinic Booking Service.

Contains unit tests for the scheduling core and integration tests for the API.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"

# Ensure we're using SQLite for tests
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///./test_clinic_booking.db")
