"""portal.integrations — External service gateway modules.

All outbound HTTP calls to third-party APIs must go through a gateway
in this package, never via bare `requests` calls in services or blueprints.

Every call is:
  - Authenticated (service key injected by the gateway)
  - Retried with backoff on transient failures
  - Logged with the identifiers it acted on

Current gateways:
  identity_gateway.IdentityGateway — identity provider admin API (teardown Phase 2)
"""
