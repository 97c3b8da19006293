"""Live call feedback: dual-stream recording, periodic transcription and coaching."""

__version__ = "1.0.0"
