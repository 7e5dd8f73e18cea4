"""
Rights Service package.

Issues and verifies per-(application, account) rights:

- app.main: API surface, storage wiring and lifecycle hooks.
- app.rights: Right model, status rules and the lifecycle engine.
- app.tokens: Signed entitlement tokens carried by every right.
- app.persistence: Rights store contract with in-memory and PostgreSQL backends.
- app.verification: Ordered access checks, bulk checks and listings.
- app.federation: JWKS client, local sessions and provider subject mapping.
- app.directory: Accounts, applications and user identities.

Guidelines:
- Status is derived from expires_at on every read; expiry is never a write.
- Module import must not perform network calls; IO happens in handlers or
  the explicit start/stop hooks.
"""
