"""RTMP building blocks: AMF0 codec, command parsing and dispatch, stream registry,
publish/play handling and media statistics."""

__version__ = "0.1.0"
__all__ = ["commands", "dispatcher", "media_logger", "registry", "handlers"]