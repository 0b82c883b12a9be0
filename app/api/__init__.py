"""
HTTP / WebSocket API 라우터
"""
