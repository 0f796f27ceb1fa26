"""Lesson Scheduler package.

Lesson-slot lifecycle engine for a tutoring admin panel: slot creation, absences,
rescheduling with makeup linkage, cascading deletes and teacher double-booking checks.
Organized as feature modules with a thin Flask controller layer over
service/repository layers.
"""
