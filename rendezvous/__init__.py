# Rendezvous relay package
#
# Provides:
#  - in-memory connection registry (participant id -> live connection)
#  - per-connection relay dispatcher for presence and negotiation events
#  - FastAPI-based WebSocket server and a small websockets client
#
# See rendezvous/server.py for the app entry point.
