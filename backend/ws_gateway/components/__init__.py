"""
WebSocket Gateway components.

- core: constants and the per-connection context
- endpoints: the chat WebSocket endpoint
- static_files: entry page and asset serving
"""
