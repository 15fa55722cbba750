"""
Notification Service

Message catalog, Pushsafer transport and alert dispatch.
"""
