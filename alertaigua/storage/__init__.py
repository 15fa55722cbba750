"""
Storage

Subscriber persistence and notification audit log (Supabase REST).
"""
