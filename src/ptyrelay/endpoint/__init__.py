"""HTTP/WebSocket front end for ptyrelay.

Serves the relay WebSocket route and a health check, and adapts
Starlette WebSockets to the relay's Connection interface.
"""
