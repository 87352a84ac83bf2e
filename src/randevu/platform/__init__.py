"""
Randevu Platform - subscription billing for appointment-booking businesses.

This package provides:
- Plan catalog with location-based pricing
- Subscription lifecycle (trials, plan changes, cancellation, renewal)
- Plan usage limits for staff, services, customers and SMS
- Celery-driven renewal and expiry sweeps
"""

__version__ = "1.0.0"
