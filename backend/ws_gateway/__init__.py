"""
WebSocket Gateway: relays chat messages between browsers and Redis pub/sub.
"""
