"""Counseling practice booking service: calendars, slots and appointment lifecycle"""
__version__ = "0.1.0"
