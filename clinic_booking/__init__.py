"""
Clinic Booking Service

A FastAPI-based service that turns doctors' weekly schedules into bookable
slots, books appointments without double booking and drives the appointment
lifecycle for clinics.
"""

__version__ = "1.0.0"
