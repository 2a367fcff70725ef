"""
BloodNet lifecycle service.
Blood unit registry, status transitions, expiry handling, compatibility
matching, reservations and organization application review.
"""

__version__ = "1.0.0"
