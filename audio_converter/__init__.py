"""Audio Converter API: fetch, transcode and serve remote audio.

WHY: Clients hold a URL to some audio (often a .webm recording) and need
it in a widely playable format. This package downloads the source,
hands it to ffmpeg, and serves the result once before reclaiming disk.

HOW: Leaf components (fetcher, transcoder) are plain async helpers. The
server package wires them into a per-request job coordinator, an
artifact store with a retention sweeper, and a FastAPI app.

RULES:
- No state survives a restart except files in the upload directory
- Every request gets its own job ID; nothing is deduplicated
"""

__version__ = "1.0.0"
