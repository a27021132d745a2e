"""
Video content moderation worker.

Uploads a video, samples frames, rates each frame with a vision model under
bounded concurrency and streams progress to the caller as JSON lines.
"""

__version__ = "0.1.0"
