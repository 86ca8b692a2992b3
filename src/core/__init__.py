"""Core domain package for groupwarden.

Core contains phone matching, group classification, the removal policy and
the notification gate without any WhatsApp, SQL or queue-specific code,
keeping the business logic portable.
"""
