"""
Transaction classification, learning and review-routing core.

A deterministic, testable decision engine that turns extracted bank
transactions into categorized, reviewable records with a calibrated
confidence signal, and improves itself from user corrections.
"""

__version__ = "0.1.0"
