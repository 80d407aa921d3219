"""Planforge - phased project planning service.

Guides a project through six fixed planning phases:
- Phase state machine (sessions, phase completion, merged global data)
- Context assembly (persona + template + prior documents + chat history)
- Per-session document store for generated artifacts
- Packaging engine that bundles everything into a downloadable zip
"""

__version__ = "0.1.0"
