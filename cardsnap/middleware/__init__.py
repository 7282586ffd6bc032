"""
CardSnap — Middleware Package
==============================

Middleware Chain (order matters):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Rate Limit first: abusive clients are rejected before any work
    2. Request ID: correlation id for every log line of the request
    3. Logging: method, path, status, duration, user
    4. GZip / CORS: Starlette built-ins, configured in main.py
"""
