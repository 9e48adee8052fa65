"""
chatwoot-cli core module

Core components:
- api: REST client and resilient request executor
- realtime: ActionCable WebSocket transport
- follow: real-time conversation follower (routing, debounce, reconnect)
- config: YAML configuration loading
"""
