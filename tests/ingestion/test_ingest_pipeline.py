from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

import pytest

from analysis.services.synthesizer import Synthesizer
from ingestion.connectors.base import PermanentError
from ingestion.connectors.rss import RSSConnector
from ingestion.settings import ConfigurationError, FeedSource, Settings
from ingestion.tasks.ingest import run_ingestion
from llm.client.base import GenerationResponse, ModelUnavailableError, PermanentLLMError
from llm.settings import GenerationSettings

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeGenerator:
    """Answers by model name; ``replies`` values are either text or an exception class."""

    def __init__(self, replies: Dict[str, Any]) -> None:
        self.replies = replies
        self.calls: List[str] = []

    async def generate(self, *, model: str, prompt: str, temperature: float, max_output_tokens: int) -> GenerationResponse:
        self.calls.append(model)
        reply = self.replies[model]
        if isinstance(reply, type) and issubclass(reply, Exception):
            raise reply(f"{model} failed", model=model)
        if callable(reply):
            return GenerationResponse(text=reply(prompt), model=model)
        return GenerationResponse(text=reply, model=model)


async def _no_sleep(_delay: float) -> None:
    return None


def _feed(feed_id: str, category: str, country: str = "FR") -> FeedSource:
    return FeedSource(id=feed_id, name=feed_id.upper(), category=category, country=country, url=f"https://{feed_id}.example/rss")


def _entries(feed: FeedSource, n: int = 3) -> List[Dict[str, Any]]:
    return [
        {
            "title": f"{feed.id} story {i}",
            "summary": f"Excerpt {i}",
            "link": f"https://{feed.id}.example/{i}",
            "published": f"2025-03-01T{10 - i:02d}:00:00Z",
        }
        for i in range(1, n + 1)
    ]


def _connector_factory(raw: Dict[str, Any]):
    async def _fetcher(feed: FeedSource):
        value = raw[feed.id]
        if isinstance(value, Exception):
            raise value
        return value

    connector = RSSConnector(fetcher=_fetcher)
    return lambda _feed: connector


def _gen_settings(candidates: str = "m1,m2") -> GenerationSettings:
    return GenerationSettings(gemini_api_key="k", candidate_models_csv=candidates, retry_max_attempts=1)


async def _run(feeds: Sequence[FeedSource], raw: Dict[str, Any], generator: FakeGenerator, tmp_path, **settings_kw):
    settings = Settings(feeds=list(feeds), output_dir=str(tmp_path), **settings_kw)
    gen_settings = _gen_settings()
    synth = Synthesizer(generator, gen_settings, sleep=_no_sleep)
    report = await run_ingestion(
        settings,
        gen_settings,
        connector_factory=_connector_factory(raw),
        synthesizer=synth,
        now=NOW,
    )
    return report


def _read(tmp_path, name: str) -> Dict[str, Any]:
    return json.loads((tmp_path / f"{name}.json").read_text(encoding="utf-8"))


GOOD = json.dumps({"title": "Synthèse", "summary": "Trois articles résumés."})


@pytest.mark.asyncio
async def test_scenario_a_first_candidate_succeeds(tmp_path):
    world = _feed("bbc", "monde", "GB")
    generator = FakeGenerator({"m1": GOOD})

    report = await _run([world], {"bbc": _entries(world)}, generator, tmp_path)

    feeds = _read(tmp_path, "feeds")
    monde = _read(tmp_path, "monde")
    assert feeds["count"] == 1 and monde["count"] == 1
    entry = feeds["items"][0]
    assert entry["model"] == "m1"
    assert "error" not in entry
    assert entry["title"] == "Synthèse"
    assert entry["sourcesCount"] == 3
    assert entry["url"] == "https://bbc.example/1"
    assert entry["updatedAt"] == "2025-03-01T12:00:00Z"
    assert generator.calls == ["m1"]
    assert report.degraded == 0


@pytest.mark.asyncio
async def test_scenario_b_all_candidates_not_found_falls_back(tmp_path):
    world = _feed("bbc", "monde", "GB")
    generator = FakeGenerator({"m1": ModelUnavailableError, "m2": ModelUnavailableError})

    report = await _run([world], {"bbc": _entries(world)}, generator, tmp_path)

    entry = _read(tmp_path, "feeds")["items"][0]
    assert entry["title"] == "Monde : bbc story 1"
    assert entry["summary"].startswith("bbc story 1")
    assert entry["model"] is None
    assert entry["error"]
    assert generator.calls == ["m1", "m2"]
    assert report.degraded == 1


@pytest.mark.asyncio
async def test_scenario_c_shared_category(tmp_path):
    a, b, t = _feed("lemonde", "economie"), _feed("echos", "economie"), _feed("verge", "tech", "US")
    generator = FakeGenerator({"m1": GOOD})
    raw = {f.id: _entries(f, 2) for f in (a, b, t)}

    await _run([a, t, b], raw, generator, tmp_path)

    economie = _read(tmp_path, "economie")
    feeds = _read(tmp_path, "feeds")
    assert economie["count"] == 2
    assert [e["feedId"] for e in economie["items"]] == ["lemonde", "echos"]
    assert [e["feedId"] for e in feeds["items"]] == ["lemonde", "verge", "echos"]
    assert _read(tmp_path, "tech")["count"] == 1


@pytest.mark.asyncio
async def test_fetch_failure_yields_placeholder_without_generation(tmp_path):
    world, tech = _feed("bbc", "monde", "GB"), _feed("verge", "tech", "US")
    generator = FakeGenerator({"m1": GOOD})
    raw = {"bbc": PermanentError("HTTP 410"), "verge": _entries(tech)}

    report = await _run([world, tech], raw, generator, tmp_path)

    items = _read(tmp_path, "feeds")["items"]
    assert items[0]["title"] == "Monde : aucune donnée"
    assert items[0]["sourcesCount"] == 0
    assert "HTTP 410" in items[0]["error"]
    assert items[1]["model"] == "m1"
    assert generator.calls == ["m1"]
    assert report.degraded == 1


@pytest.mark.asyncio
async def test_permanent_generation_error_degrades_only_that_feed(tmp_path):
    world, tech = _feed("bbc", "monde", "GB"), _feed("verge", "tech", "US")

    def _reply(prompt: str) -> str:
        if "BBC" in prompt:
            raise PermanentLLMError("401 unauthorized")
        return GOOD

    generator = FakeGenerator({"m1": _reply})
    report = await _run([world, tech], {"bbc": _entries(world), "verge": _entries(tech)}, generator, tmp_path)

    items = _read(tmp_path, "feeds")["items"]
    assert "401" in items[0]["error"]
    assert items[0]["title"] == "Monde : bbc story 1"
    assert "error" not in items[1]
    assert report.degraded == 1


@pytest.mark.asyncio
async def test_concurrent_run_keeps_configured_order(tmp_path):
    feeds = [_feed(f"f{i}", "monde") for i in range(4)]
    generator = FakeGenerator({"m1": GOOD})

    report = await _run(feeds, {f.id: _entries(f, 1) for f in feeds}, generator, tmp_path, ingest_concurrency=3)

    assert [o.feed.id for o in report.outcomes] == ["f0", "f1", "f2", "f3"]
    assert [e["feedId"] for e in _read(tmp_path, "feeds")["items"]] == ["f0", "f1", "f2", "f3"]


@pytest.mark.asyncio
async def test_entry_ids_are_stable_across_runs(tmp_path):
    world = _feed("bbc", "monde", "GB")
    raw = {"bbc": _entries(world)}

    await _run([world], raw, FakeGenerator({"m1": GOOD}), tmp_path / "first")
    await _run([world], raw, FakeGenerator({"m1": GOOD}), tmp_path / "second")

    first = _read(tmp_path / "first", "feeds")
    second = _read(tmp_path / "second", "feeds")
    assert first == second


@pytest.mark.asyncio
async def test_configuration_error_aborts_run(tmp_path):
    world = _feed("bbc", "monde", "GB")
    settings = Settings(feeds=[world], output_dir=str(tmp_path))
    gen_settings = _gen_settings()

    def _factory(_feed):
        raise ConfigurationError("bad feed config")

    with pytest.raises(ConfigurationError):
        await run_ingestion(
            settings,
            gen_settings,
            connector_factory=_factory,
            synthesizer=Synthesizer(FakeGenerator({}), gen_settings, sleep=_no_sleep),
            now=NOW,
        )
    assert not (tmp_path / "feeds.json").exists()


@pytest.mark.asyncio
async def test_run_closes_generation_client_it_builds(tmp_path, monkeypatch):
    import ingestion.tasks.ingest as ingest_module

    world = _feed("bbc", "monde", "GB")
    built: List[FakeGenerator] = []

    class ClosingGenerator(FakeGenerator):
        closed = 0

        async def aclose(self) -> None:
            self.closed += 1

    def _build(_settings, *, http_client=None):
        generator = ClosingGenerator({"m1": GOOD})
        built.append(generator)
        return generator

    monkeypatch.setattr(ingest_module, "build_generation_client", _build)
    settings = Settings(feeds=[world], output_dir=str(tmp_path))

    report = await run_ingestion(
        settings,
        _gen_settings(),
        connector_factory=_connector_factory({"bbc": _entries(world)}),
        now=NOW,
    )

    assert len(built) == 1
    assert built[0].calls == ["m1"]
    assert built[0].closed == 1
    assert report.degraded == 0
