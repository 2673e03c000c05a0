"""
alerts — Alert records and multi-channel broadcasting.

Sub-modules:
    channels/           — Per-channel senders (email, SMS, WhatsApp, call center, social)
    broadcast_service   — Fans one alert out over the requested channels
    repository          — Alert storage used by the routes
    models              — Data structures shared across the system
"""
