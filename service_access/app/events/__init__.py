"""
Access event streaming: the in-process publisher and its SSE framing.
"""
