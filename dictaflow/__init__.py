"""DictaFlow - real-time dictation with chunked and streaming transcription."""

__version__ = "0.1.0"
