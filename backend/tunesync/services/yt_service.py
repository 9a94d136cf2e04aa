"""
Video search provider: YouTube search through yt-dlp.

Only metadata is fetched (flat playlist, no download); playback itself
happens in each client's own player.

  - asyncio.Semaphore(2): max 2 parallel yt-dlp processes
  - Execution time logging for every subprocess call
"""
import asyncio
import json
import time
import logging
from dataclasses import dataclass

from tunesync.core.config import settings

logger = logging.getLogger(__name__)

MAX_CONCURRENT = 2


class ExtractionError(Exception):
    """Raised when yt-dlp fails or times out."""
    pass


@dataclass
class SearchResult:
    video_id: str
    title: str
    channel_title: str = ""
    thumbnail_url: str = ""
    duration: float | None = None


def _thumbnail_of(data: dict) -> str:
    if data.get("thumbnail"):
        return data["thumbnail"]
    thumbnails = data.get("thumbnails") or []
    if thumbnails:
        # yt-dlp lists thumbnails smallest first
        return thumbnails[0].get("url", "")
    return f"https://i.ytimg.com/vi/{data.get('id', '')}/default.jpg"


def parse_search_output(raw: str) -> list[SearchResult]:
    """One JSON object per line, as printed by ``--dump-json --flat-playlist``."""
    results = []
    for line in raw.splitlines():
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not data.get("id"):
            continue
        duration = data.get("duration")
        results.append(SearchResult(
            video_id=data["id"],
            title=data.get("title") or "Unknown",
            channel_title=data.get("channel") or data.get("uploader") or "",
            thumbnail_url=_thumbnail_of(data),
            duration=float(duration) if duration else None,
        ))
    return results


class YouTubeService:
    def __init__(self):
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT)

    # ─────────────────── low-level runner ───────────────────

    async def _run_ytdlp(self, args: list[str], timeout: float = 15.0) -> str:
        """Run yt-dlp as async subprocess, guarded by semaphore."""
        async with self._semaphore:
            start = time.monotonic()
            logger.info(f"yt-dlp spawning: {' '.join(args[:6])}...")
            try:
                proc = await asyncio.create_subprocess_exec(
                    "yt-dlp", *args,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError:
                raise ExtractionError("yt-dlp is not installed")
            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=timeout
                )
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                elapsed = time.monotonic() - start
                logger.error(f"yt-dlp TIMEOUT after {elapsed:.1f}s")
                raise ExtractionError("yt-dlp timed out")

            elapsed = time.monotonic() - start

            if proc.returncode != 0:
                err_msg = stderr.decode(errors="replace").strip()
                logger.error(f"yt-dlp FAILED in {elapsed:.1f}s: {err_msg[:200]}")
                raise ExtractionError(f"yt-dlp failed: {err_msg[:200]}")

            logger.info(f"yt-dlp completed in {elapsed:.1f}s")
            return stdout.decode(errors="replace").strip()

    # ─────────────────── search ───────────────────

    async def search(self, query: str, max_results: int | None = None) -> list[SearchResult]:
        """Search YouTube via ytsearch, return metadata only (no download)."""
        max_results = max_results or settings.SEARCH_MAX_RESULTS
        raw = await self._run_ytdlp([
            f"ytsearch{max_results}:{query}",
            "--dump-json",
            "--flat-playlist",
            "--no-download",
            "--no-warnings",
            "--skip-download",
        ], timeout=settings.SEARCH_TIMEOUT_S)
        return parse_search_output(raw)


# Module-level singleton
yt_service = YouTubeService()
