"""End-to-end tests against a running relay server."""
