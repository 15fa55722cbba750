"""
Water Service

Polls the SAIH Ebro telemetry feed, keeps each subscriber's alarm ring up
to date and tracks service availability.
"""
