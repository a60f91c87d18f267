"""
Realtime app for WebSocket communication.

Key Components:
    - consumers/: WebSocket consumers (driver, rider)
    - notifications.py: Trip event notification helpers (fire-and-forget)
    - middleware.py: JWT/Cookie authentication for WebSocket connections

Usage:
    from realtime.notifications import notify_driver_event, notify_rider_event
"""
