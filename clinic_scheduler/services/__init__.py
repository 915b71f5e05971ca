"""Scheduling services: availability, conflicts, slots, lifecycle and booking."""
