from __future__ import annotations

import asyncio
from datetime import datetime

from aiohttp import web

from relevance.history import rebuild_chat
from relevance.models import MessageRecord
from relevance.persistence import PersistenceError
from relevance.tfidf import suggest_title
from . import render_template, _redirect

TOP_WORDS_LIMIT = 50
SUGGEST_WORD_LIMIT = 12


def _format_mtime(timestamp: float | None) -> str:
    if timestamp is None:
        return "never"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _summary(registry, index) -> dict:
    return {
        "id": index.corpus_id,
        "documents": index.document_count,
        "vocabulary": len(index.frequencies.document_word_counts()),
        "forks": len(index.forks),
        "dirty": index.dirty,
        "stale": registry.store.is_stale(index.corpus_id),
        "saved_at": _format_mtime(registry.store.modified_at(index.corpus_id)),
    }


def _get_index(request: web.Request):
    registry = request.app["registry"]
    corpus_id = request.match_info["corpus_id"]
    index = registry.get(corpus_id)
    if index is None:
        _redirect("/", f"Corpus {corpus_id} is not loaded")
    return registry, index


def _records_from_text(corpus_id: str, text: str) -> list[MessageRecord]:
    # One pasted paragraph per message.
    chunks = [chunk.strip() for chunk in text.replace("\r\n", "\n").split("\n\n")]
    return [
        MessageRecord(id=f"pasted-{i}", channel_id=corpus_id, content=chunk)
        for i, chunk in enumerate(chunks)
        if chunk
    ]


async def corpora_overview(request: web.Request) -> web.Response:
    registry = request.app["registry"]
    indexes = [registry.get(cid) for cid in registry.corpus_ids()]
    return render_template(
        "corpora.jinja2",
        title="Corpora",
        corpora=[_summary(registry, index) for index in indexes if index is not None],
        message=request.rel_url.query.get("msg"),
    )


def _render_corpus(request, registry, index, **extra) -> web.Response:
    words = [
        {"word": word, "documents": count, "idf": index.idf(word)}
        for word, count in index.frequencies.top_document_words(TOP_WORDS_LIMIT)
    ]
    return render_template(
        "corpus.jinja2",
        title=f"Corpus {index.corpus_id}",
        corpus=_summary(registry, index),
        words=words,
        message=request.rel_url.query.get("msg"),
        **extra,
    )


async def corpus_detail(request: web.Request) -> web.Response:
    registry, index = _get_index(request)
    return _render_corpus(request, registry, index)


async def suggest_corpus_title(request: web.Request) -> web.Response:
    registry, index = _get_index(request)
    form = await request.post()
    text = (form.get("text") or "").strip()
    try:
        max_words = max(1, int(form.get("max_words") or 6))
    except ValueError:
        max_words = 6
    records = _records_from_text(index.corpus_id, text)
    if not records:
        _redirect(f"/corpus/{index.corpus_id}", "Paste some messages first")
    tfidf = index.tfidf_for_messages(records)
    scored = [{"word": word, "score": value} for word, value in tfidf.ranked()[:SUGGEST_WORD_LIMIT]]
    return _render_corpus(
        request,
        registry,
        index,
        suggestion=suggest_title(tfidf.auto_top_words(max_words)),
        scored=scored,
        pasted=text,
        max_words=max_words,
    )


async def save_corpus(request: web.Request) -> web.Response:
    _, index = _get_index(request)
    try:
        await asyncio.to_thread(index.persist)
    except PersistenceError as exc:
        _redirect(f"/corpus/{index.corpus_id}", str(exc))
    _redirect(f"/corpus/{index.corpus_id}", "Snapshot saved")


async def rebuild_corpus(request: web.Request) -> web.Response:
    registry, index = _get_index(request)
    client = request.app["tg_client"]
    if client is None:
        _redirect(f"/corpus/{index.corpus_id}", "Telegram client is not connected")
    try:
        rebuilt = await rebuild_chat(client, registry, int(index.corpus_id))
    except Exception as exc:
        _redirect(f"/corpus/{index.corpus_id}", f"Rebuild failed: {exc}")
    _redirect(f"/corpus/{index.corpus_id}", f"Rebuilt from {rebuilt.document_count} messages")


routes = [
    web.get("/", corpora_overview),
    web.get("/corpus/{corpus_id}", corpus_detail),
    web.post("/corpus/{corpus_id}/suggest", suggest_corpus_title),
    web.post("/corpus/{corpus_id}/save", save_corpus),
    web.post("/corpus/{corpus_id}/rebuild", rebuild_corpus),
]
