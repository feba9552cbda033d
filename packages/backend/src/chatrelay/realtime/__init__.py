"""Real-time infrastructure — channel bus, consumers, WebSocket.

Learn: A message travels through three layers after it is committed:
1. MessageService → ChannelBus.publish (one PUBLISH per send)
2. Shared transport (Redis) → every instance's bus reader task
3. Bus → SubscriptionConsumer per client → WebSocket frame

Producers never know who is listening, and consumers never know which
instance produced the event.
"""
