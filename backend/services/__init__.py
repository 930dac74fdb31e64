"""
Services package - Business logic layer.

This package contains the booking and matching core. It operates on Django
models but is decoupled from the HTTP layer.

Modules:
    - booking: Seat requests, seat accounting and ride lifecycle
    - matching: Proximity matching of rides to a rider's route
"""
