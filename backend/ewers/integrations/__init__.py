"""
integrations — External access layer: API keys and outbound webhooks.

Sub-modules:
    signing              — Secret generation, canonical payloads, HMAC-SHA256
    models               — ApiKey / Webhook records and delivery results
    store                — Credential store contract + in-memory store
    sql_store            — PostgreSQL credential store
    api_key_gate         — Authorization of key-gated requests
    webhook_dispatcher   — Signed, bounded-concurrency event fan-out
    integration_service  — Owner-facing key and webhook management
"""
