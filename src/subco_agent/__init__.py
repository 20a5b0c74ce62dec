"""
Subco Agent — MQTT edge agent for the subco service.

Tracks the local software version, reconciles it against controller
announcements on newUpdate, answers getVersion, and broadcasts a periodic
DeviceStatus heartbeat. A small read-only HTTP surface exposes the same state.
"""
