# stackspay/x402/__init__.py
"""
x402 Payment Protocol for Stacks.

Implements the "exact" STX scheme of the x402 protocol: a server answers
HTTP 402 with a machine-readable requirement, a client pays it with a signed
STX transfer and retries, and the server verifies and broadcasts the payment
before serving the resource.

Key components:
- types / codec: requirement and payload models and their header encoding
- builder: signs payment payloads (client side)
- client: requests adapter that pays 402 demands automatically
- verifier: checks a payload against its requirement (server side)
- settlement: broadcasts verified payments and tracks confirmation
- middleware: FastAPI gate for priced routes
- audit: JSON-lines audit trail of payment events

Configuration is loaded from environment variables via stackspay.core.config.
"""

__version__ = "0.1.0"
