"""API routers and webhook security.

Routers:
- health: health, readiness and liveness probes
- voice_webhooks: Telnyx Call Control webhook endpoint
"""
