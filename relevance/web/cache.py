from __future__ import annotations

from datetime import datetime

from aiohttp import web

from relevance.text_normalizer import cache as normalizer_cache
from . import render_template, _redirect


def _format_duration(seconds: int) -> str:
    if seconds <= 0:
        return "0 s"
    minutes, sec = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    parts = []
    if hours:
        parts.append(f"{hours} h")
    if minutes:
        parts.append(f"{minutes} m")
    if sec or not parts:
        parts.append(f"{sec} s")
    return " ".join(parts)


def _serialize_cache(cache, title: str, description: str) -> dict:
    entries = []
    for entry in cache.dump():
        expires_at = datetime.fromtimestamp(entry["expires_at"])
        value = entry["value"]
        entries.append({
            "key": entry["key"],
            "value": " ".join(value) if isinstance(value, (list, tuple)) else value,
            "expires_in": entry["expires_in"],
            "expires_in_human": _format_duration(entry["expires_in"]),
            "expires_at": expires_at.strftime("%Y-%m-%d %H:%M:%S"),
        })
    entries.sort(key=lambda item: item["expires_in"])
    return {
        "title": title,
        "description": description,
        "ttl": cache.ttl,
        "max_items": cache.max_items,
        "hits": cache.hits,
        "misses": cache.misses,
        "entries": entries,
    }


async def cache_overview(request: web.Request) -> web.Response:
    caches = [
        _serialize_cache(
            normalizer_cache,
            "Normalization cache",
            "Normalized words per message text, reused by indexing and scoring.",
        ),
    ]
    total_entries = sum(len(cache["entries"]) for cache in caches)
    return render_template(
        "cache.jinja2",
        title="Caches",
        caches=caches,
        total_entries=total_entries,
        message=request.rel_url.query.get("msg"),
    )


async def clear_cache(request: web.Request) -> web.Response:
    removed = normalizer_cache.clear()
    _redirect("/cache", f"Removed {removed} entries")


routes = [
    web.get("/cache", cache_overview),
    web.post("/cache/clear", clear_cache),
]
