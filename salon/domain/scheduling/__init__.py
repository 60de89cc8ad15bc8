"""
Scheduling Domain

Appointment booking, availability and lifecycle.

- time_calculator.py      Interval arithmetic
- availability_service.py Staff working windows and absences
- resource_service.py     Shared resource capacity
- validator.py            Admission decision for a booking request
- lifecycle.py            Status and confirmation transitions
- service.py / router.py  Appointment endpoints
"""
