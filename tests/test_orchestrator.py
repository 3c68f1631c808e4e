import asyncio

from bedtime_queue.playlist.models import Phase, RemoteStatus

from conftest import FakeRemote, make_story, run


def _loaded(make_orchestrator, stories, **kwargs):
    orch = make_orchestrator(stories, **kwargs)
    run(orch.load())
    return orch


class TestLoad:
    def test_seeds_first_twelve_and_syncs(self, make_orchestrator):
        orch = _loaded(make_orchestrator, [make_story(i) for i in range(1, 16)])
        expected = [str(i) for i in range(1, 13)]
        assert orch.store.ids() == expected
        assert orch.library.synced == [("set", expected)]
        assert orch.persistence.load_ids() == expected

    def test_restores_order_and_drops_stale(self, make_orchestrator, persistence, abc_stories):
        persistence.save(["C", "gone", "A"])
        orch = _loaded(make_orchestrator, abc_stories)
        assert orch.store.ids() == ["C", "A"]
        assert orch.library.synced == []
        assert persistence.load_ids() == ["C", "A"]

    def test_library_unavailable_gives_empty_queue(self, make_orchestrator, abc_stories):
        orch = make_orchestrator(abc_stories)
        orch.library.available = False
        run(orch.load())
        assert len(orch.store) == 0
        assert orch.phase is Phase.IDLE


class TestLocalAdvance:
    def test_ended_skips_unplayable_then_idles(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        local = orch.local

        async def scenario():
            await orch.play_at(0)
            await local.finish()
            assert orch.store.current_id == "C"
            await local.finish()

        run(scenario())
        assert [sid for _url, sid in local.played] == ["A", "C"]
        assert local.played[0][0] == "http://library/audio/story-A.mp3"
        assert orch.store.current_index == -1
        assert orch.phase is Phase.IDLE
        assert local.stops >= 1

    def test_repeat_all_wraps_to_head(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories, repeat_all=True)

        async def scenario():
            await orch.play_at(0)
            await orch.local.finish()
            await orch.local.finish()

        run(scenario())
        assert [sid for _url, sid in orch.local.played] == ["A", "C", "A"]
        assert orch.store.current_id == "A"

    def test_every_entry_failing_goes_idle(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories, repeat_all=True)

        async def scenario():
            await orch.play_at(0)
            await orch.local.finish(error=True)
            await orch.local.finish(error=True)

        run(scenario())
        assert [sid for _url, sid in orch.local.played] == ["A", "C"]
        assert orch.store.current_index == -1

    def test_success_resets_failure_count(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories, repeat_all=True)

        async def scenario():
            await orch.play_at(0)
            await orch.local.finish(error=True)
            await orch.local.finish()
            await orch.local.finish(error=True)

        run(scenario())
        assert [sid for _url, sid in orch.local.played] == ["A", "C", "A", "C"]
        assert orch.store.current_id == "C"

    def test_prev_and_stop(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)

        async def scenario():
            await orch.play_at(2)
            assert await orch.prev() == 0
            await orch.stop()

        run(scenario())
        assert orch.store.current_index == -1
        assert not orch.local.state.is_playing

    def test_toggle_play_starts_pauses_resumes(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        state = orch.local.state

        async def scenario():
            await orch.toggle_play()
            assert state.is_playing and state.story_id == "A"
            await orch.toggle_play()
            assert state.is_paused
            await orch.toggle_play()
            assert state.is_playing

        run(scenario())
        assert len(orch.local.played) == 1

    def test_phase_is_advancing_while_player_starts(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        seen = []
        original = orch.local.play

        async def play(url, sid):
            seen.append(orch.phase)
            return await original(url, sid)

        orch.local.play = play
        run(orch.play_at(0))
        assert seen == [Phase.ADVANCING]
        assert orch.phase is Phase.ACTIVE


class TestRemote:
    def test_next_steps_through_playable_entries(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        remote = orch.remote

        async def scenario():
            assert await orch.remote_next()
            assert remote.status == RemoteStatus(playing=True, story_id="A")
            assert await orch.remote_next()
            assert remote.status.is_playing("C")
            assert await orch.remote_next()

        run(scenario())
        assert remote.toggled == ["A", "C"]
        assert remote.stopped == 1
        assert orch.local.played == []

    def test_prev_steps_backward(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)

        async def scenario():
            orch.store.set_current(2)
            assert await orch.remote_prev()

        run(scenario())
        assert orch.remote.toggled == ["A"]

    def test_busy_device_ignores_steps(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        orch.remote.busy = True
        assert run(orch.remote_next()) is False
        assert orch.store.current_index == -1
        assert orch.remote.toggled == []

    def test_toggle_defaults_to_first_entry(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        assert run(orch.remote_toggle())
        assert orch.remote.toggled == ["A"]

    def test_toggle_refuses_story_without_audio(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        assert run(orch.remote_toggle("B")) is False
        assert orch.remote.toggled == []

    def test_stop_sends_stop_when_playing(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        assert run(orch.remote_stop()) is False
        orch.remote.status = RemoteStatus(playing=True, story_id="C")
        assert run(orch.remote_stop())
        assert orch.remote.stopped == 1
        assert orch.remote.toggled == []
        assert not orch.remote.status.playing

    def test_stop_without_reported_story(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        orch.remote.status = RemoteStatus(playing=True)
        assert run(orch.remote_stop())
        assert orch.remote.stopped == 1

    def test_reorder_while_command_pending_keeps_target(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        gate = asyncio.Event()

        class SlowRemote(FakeRemote):
            async def toggle(self, sid):
                self.busy = True
                await gate.wait()
                self.busy = False
                return await super().toggle(sid)

        slow = SlowRemote()
        orch.remote = slow

        async def scenario():
            pending = asyncio.create_task(orch.remote_next())
            await asyncio.sleep(0)
            assert slow.busy
            await orch.reorder(["C", "B", "A"])
            assert await orch.remote_next() is False
            gate.set()
            assert await pending

        run(scenario())
        assert slow.toggled == ["A"]
        assert orch.store.current_id == "A"
        assert orch.store.current_index == 2

    def test_visibility_is_forwarded(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        orch.set_visible(False)
        assert orch.remote.visible is False


class TestMutations:
    def test_add_and_remove_sync_library(self, make_orchestrator):
        orch = _loaded(make_orchestrator, [make_story(i) for i in range(1, 15)])
        orch.library.synced.clear()

        async def scenario():
            assert await orch.add("13")
            assert not await orch.add("13")
            assert not await orch.add("999")
            assert await orch.remove("1")
            assert not await orch.remove("1")

        run(scenario())
        assert orch.library.synced == [("add", "13"), ("remove", "1")]
        assert orch.store.ids()[-1] == "13"

    def test_move_applies_drag_outcome(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        orch.library.synced.clear()
        assert run(orch.move("C", "A"))
        assert orch.store.ids() == ["C", "A", "B"]
        assert orch.library.synced == [("set", ["C", "A", "B"])]
        assert orch.persistence.load_ids() == ["C", "A", "B"]

    def test_self_drop_is_noop(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        orch.library.synced.clear()
        assert run(orch.move("B", "B")) is False
        assert orch.library.synced == []

    def test_clear_stops_playback(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)

        async def scenario():
            await orch.play_at(0)
            await orch.clear()

        run(scenario())
        assert len(orch.store) == 0
        assert orch.local.stops >= 1
        assert orch.library.synced[-1] == ("set", [])

    def test_removing_current_keeps_playing(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)

        async def scenario():
            await orch.play_at(2)
            await orch.remove("C")

        run(scenario())
        assert orch.store.current_id == "B"
        assert orch.local.state.is_playing


class TestLibrary:
    def test_candidates_exclude_queued(self, make_orchestrator):
        orch = _loaded(make_orchestrator, [make_story(i) for i in range(1, 16)])
        assert [s.id for s in orch.library_candidates()] == ["13", "14", "15"]

    def test_candidates_search_text_and_topic(self, make_orchestrator, persistence):
        persistence.save(["1"])
        stories = [
            make_story(1),
            make_story(2, text="The owl who could not sleep"),
            make_story(3, topic="Owls"),
            make_story(4),
        ]
        orch = _loaded(make_orchestrator, stories)
        assert [s.id for s in orch.library_candidates("  OWL ")] == ["2", "3"]

    def test_refresh_reconciles_audio_and_deletions(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        run(orch.play_at(2))
        orch.library.stories = [make_story("A"), make_story("B")]
        assert run(orch.refresh_library())
        assert orch.store.ids() == ["A", "B"]
        assert orch.store.get("B").playable
        assert orch.store.current_id == "B"

    def test_refresh_with_library_down_changes_nothing(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        orch.library.available = False
        assert run(orch.refresh_library()) is False
        assert orch.store.ids() == ["A", "B", "C"]

    def test_update_story_does_not_interrupt_playback(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)

        async def scenario():
            await orch.play_at(0)
            return await orch.update_story("A", {"text": "A brand new ending"})

        updated = run(scenario())
        assert updated.text == "A brand new ending"
        assert orch.store.get("A").text == "A brand new ending"
        assert orch.store.current_id == "A"
        assert orch.local.stops == 0
        assert len(orch.local.played) == 1

    def test_toggle_favorite(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        assert run(orch.toggle_favorite("C")) is True
        assert orch.store.get("C").is_favorite
        assert run(orch.toggle_favorite("nope")) is None


class TestSnapshot:
    def test_snapshot_marks_current_and_remote(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        run(orch.play_at(0))
        orch.remote.status = RemoteStatus(playing=True, story_id="C")
        snap = orch.snapshot()
        assert snap["current_index"] == 0
        assert snap["current_id"] == "A"
        assert snap["phase"] == "active"
        assert [e["current"] for e in snap["entries"]] == [True, False, False]
        assert [e["remote_playing"] for e in snap["entries"]] == [False, False, True]
        assert [e["playable"] for e in snap["entries"]] == [True, False, True]
        assert snap["remote"]["playing"] is True

    def test_changes_published_with_reason(self, make_orchestrator, abc_stories):
        orch = _loaded(make_orchestrator, abc_stories)
        reasons = []
        orch.changes.subscribe(lambda reason, snap: reasons.append(reason))
        run(orch.play_at(0))
        orch.set_shuffle(True)
        assert "current" in reasons
        assert "playback" in reasons
        assert reasons[-1] == "shuffle"

    def test_start_and_close(self, make_orchestrator, abc_stories):
        orch = make_orchestrator(abc_stories)

        async def scenario():
            await orch.start()
            assert orch.library.started
            assert orch.library_refresher.running
            await orch.close()
            assert not orch.library_refresher.running

        run(scenario())
        assert len(orch.store) == 3
