"""
Relay Hub - Pairing and frame relay service.

This module runs on the rendezvous server and:
- Accepts WebSocket connections from producer and display endpoints
- Binds each endpoint to a (pair, role) slot
- Forwards binary frames from a pair's producer to its display
- Reaps connections that stop answering liveness probes
"""

__version__ = "1.0.0"
