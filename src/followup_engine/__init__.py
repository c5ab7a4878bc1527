"""
Follow-up scheduling and notification engine.

A Flask API deployed on Google Cloud Run that books client follow-up
appointments, guards against double-booking, expands recurring series
and computes reminder schedules across timezones.
"""

__version__ = "1.0.0"
__author__ = "LightAndShutter"
