"""duocall: 룸 기반 1:1 WebRTC 통화 시그널링 서버와 클라이언트."""

__version__ = "0.1.0"
