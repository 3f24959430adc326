"""Change notification, debouncing and file-driven reloads."""

import asyncio
from pathlib import Path

from synabun.core.config import ProfileSource
from synabun.domain.models import Category, TaxonomySnapshot
from synabun.services.hot_reload import (
    PROFILES,
    TAXONOMY,
    ChangeNotifier,
    Debouncer,
    DerivedView,
    HotReloadCoordinator,
)
from synabun.services.taxonomy import TaxonomyStore, write_taxonomy_file


async def test_failing_subscriber_does_not_block_others():
    notifier = ChangeNotifier()
    seen: list[str] = []

    def broken() -> None:
        raise RuntimeError("boom")

    async def async_subscriber() -> None:
        seen.append("async")

    notifier.subscribe(broken)
    notifier.subscribe(lambda: seen.append("sync"))
    notifier.subscribe(async_subscriber)

    assert await notifier.publish() == 2
    assert seen == ["sync", "async"]


async def test_unsubscribe():
    notifier = ChangeNotifier()
    seen: list[int] = []
    unsubscribe = notifier.subscribe(lambda: seen.append(1))
    unsubscribe()
    unsubscribe()
    await notifier.publish()
    assert seen == []
    assert notifier.subscriber_count == 0


async def test_debouncer_coalesces_bursts():
    runs: list[int] = []

    async def action() -> None:
        runs.append(1)

    debouncer = Debouncer(0.05, action)
    for _ in range(5):
        debouncer.trigger()
        await asyncio.sleep(0.01)
    assert debouncer.pending
    await debouncer.wait()
    assert runs == [1]

    debouncer.trigger()
    debouncer.cancel()
    await asyncio.sleep(0.08)
    assert runs == [1]


async def test_trigger_during_action_runs_again():
    runs: list[int] = []
    debouncer: Debouncer

    async def action() -> None:
        runs.append(1)
        if len(runs) == 1:
            debouncer.trigger()

    debouncer = Debouncer(0.01, action)
    debouncer.trigger()
    await debouncer.wait()
    assert runs == [1, 1]


def test_derived_view_keeps_last_value_on_error():
    state = {"fail": False, "value": "one"}

    def compute() -> str:
        if state["fail"]:
            raise ValueError("bad state")
        return state["value"]

    view = DerivedView("guide", compute)
    assert view.value == "one"
    state.update(fail=True, value="two")
    view.refresh()
    assert view.value == "one"


def env_text(active: str) -> str:
    lines = [f"QDRANT_ACTIVE={active}"]
    for name in ("one", "two"):
        lines += [
            f"QDRANT__{name}__URL=:memory:",
            f"QDRANT__{name}__API_KEY=key",
            f"QDRANT__{name}__COLLECTION=memories_{name}",
        ]
    return "\n".join(lines) + "\n"


def build(tmp_path: Path) -> tuple[HotReloadCoordinator, TaxonomyStore, ProfileSource, list[int]]:
    env_file = tmp_path / ".env"
    env_file.write_text(env_text("one"))
    profiles = ProfileSource(env_file, base_env={})
    taxonomy = TaxonomyStore(profiles, data_dir=tmp_path / "data")
    notifier = ChangeNotifier()
    events: list[int] = []
    notifier.subscribe(lambda: events.append(1))
    coordinator = HotReloadCoordinator(taxonomy, profiles, notifier, debounce_ms=10, poll_interval=0.01)
    return coordinator, taxonomy, profiles, events


async def test_external_taxonomy_edit_reloads_and_publishes(tmp_path: Path):
    coordinator, taxonomy, _profiles, events = build(tmp_path)
    guide = coordinator.register_view(DerivedView("guide", taxonomy.routing_guide))
    await taxonomy.commit([Category(name="first", description="one")])
    coordinator._baseline()
    assert coordinator.poll_once() is False

    write_taxonomy_file(
        taxonomy.path,
        TaxonomySnapshot(categories=(Category(name="first", description="one"), Category(name="second", description="two"))),
    )
    assert coordinator.poll_once() is True
    await coordinator.debouncer.wait()

    assert taxonomy.names == ["first", "second"]
    assert "second=two" in guide.value
    assert events == [1]


async def test_own_writes_are_not_reloaded(tmp_path: Path):
    coordinator, taxonomy, _profiles, events = build(tmp_path)
    coordinator._baseline()
    await taxonomy.commit([Category(name="mine", description="local edit")])
    assert coordinator.poll_once() is False
    assert events == []


async def test_half_written_taxonomy_defers_reload(tmp_path: Path):
    coordinator, taxonomy, _profiles, events = build(tmp_path)
    await taxonomy.commit([Category(name="stable", description="kept")])
    taxonomy.path.write_text('{"version": 1, "catego')

    coordinator.notice(TAXONOMY)
    await coordinator.debouncer.wait()
    assert taxonomy.names == ["stable"]
    assert events == []


async def test_connection_switch_swaps_taxonomy(tmp_path: Path):
    coordinator, taxonomy, profiles, events = build(tmp_path)
    await taxonomy.commit([Category(name="from-one", description="first connection")])

    (tmp_path / ".env").write_text(env_text("two"))
    coordinator.notice(PROFILES)
    await coordinator.debouncer.wait()

    assert profiles.active_connection().collection == "memories_two"
    assert taxonomy.names == []
    assert events == [1]


async def test_unchanged_profiles_publish_nothing(tmp_path: Path):
    coordinator, _taxonomy, _profiles, events = build(tmp_path)
    coordinator.notice(PROFILES)
    assert await coordinator.settle() is False
    coordinator.debouncer.cancel()
    assert events == []


async def test_polling_loop_end_to_end(tmp_path: Path):
    coordinator, taxonomy, _profiles, events = build(tmp_path)
    await taxonomy.commit([Category(name="first", description="one")])
    await coordinator.start()
    try:
        await asyncio.sleep(0.05)
        write_taxonomy_file(taxonomy.path, TaxonomySnapshot(categories=(Category(name="other", description="x"),)))
        for _ in range(100):
            if events:
                break
            await asyncio.sleep(0.01)
    finally:
        await coordinator.stop()
    assert taxonomy.names == ["other"]
    assert events == [1]
