"""
Tests for the Session controller: cycle orchestration, ledger ordering,
state transitions and graceful shutdown.
"""

import asyncio
import json
import shlex
import sys
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from callcoach.config import SessionSettings
from callcoach.events import EventBus, EventKind, SessionStartupError
from callcoach.feedback import FeedbackEngine
from callcoach.models import LOCAL_FORMAT, REMOTE_FORMAT, TranscriptEntry
from callcoach.producers import ProducerSupervisor
from callcoach.session import Session, SessionState, make_session_id

from fakes import FakeProvider, FakeSupervisor, FakeTranscriber

STARTED = datetime(2025, 6, 1, 10, 20, 30, 123000, tzinfo=timezone.utc)


class SessionTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name) / "data"
        self.emitted = []

    def tearDown(self):
        self._tmp.cleanup()

    def make_session(self, transcriber=None, provider=None, supervisor=None, **settings):
        settings.setdefault("interval_ms", 60000)
        settings.setdefault("data_dir", str(self.data_dir))
        self.transcriber = transcriber or FakeTranscriber()
        self.provider = provider or FakeProvider()
        self.events = EventBus()
        self.supervisor = supervisor or FakeSupervisor()
        feedback = FeedbackEngine(
            self.provider, events=self.events, feedback_prompt="{context}", summary_prompt="SUMMARY\n{context}"
        )
        return Session(
            SessionSettings(**settings),
            self.transcriber,
            feedback,
            events=self.events,
            supervisor=self.supervisor,
            started_at=STARTED,
            emit=lambda kind, text: self.emitted.append((kind, text)),
        )

    def saved(self, session):
        return json.loads(session.ledger.path.read_text(encoding="utf-8"))


class TestSessionIdentity(SessionTestCase):

    def test_session_id_from_start_instant(self):
        self.assertEqual(make_session_id(STARTED), "2025-06-01T10-20-30-123Z")

    def test_transcript_path(self):
        session = self.make_session()
        self.assertEqual(session.ledger.path, self.data_dir / "transcript_2025-06-01T10-20-30-123Z.json")


class TestCycle(SessionTestCase):

    async def test_silence_only_local(self):
        session = self.make_session(FakeTranscriber({"local": ""}))
        session.accumulators["local"].append(b"\x00" * 32000)

        self.assertEqual(await session.run_cycle(), [])

        self.assertEqual(len(self.transcriber.calls), 1)
        stream, raw, fmt = self.transcriber.calls[0]
        self.assertEqual((stream, len(raw), fmt), ("local", 32000, LOCAL_FORMAT))
        self.assertEqual(len(session.ledger), 0)
        self.assertEqual(self.provider.prompts, [])
        self.assertFalse(session.ledger.path.exists())

    async def test_empty_accumulators_skip_transcription(self):
        session = self.make_session(FakeTranscriber({"local": "x", "remote": "y"}))
        with self.assertLogs("callcoach.session", level="INFO") as logs:
            self.assertEqual(await session.run_cycle(), [])
        self.assertEqual(self.transcriber.calls, [])
        self.assertTrue(any("No speech detected" in line for line in logs.output))

    async def test_both_streams_produce_entries(self):
        session = self.make_session(FakeTranscriber({"local": "Hello", "remote": " Hi there "}))
        session.accumulators["local"].append(b"\x01" * 320)
        session.accumulators["remote"].append(b"\x02" * 384)

        entries = await session.run_cycle()

        self.assertEqual([(e.speaker, e.text) for e in entries], [("local", "Hello"), ("remote", "Hi there")])
        self.assertEqual(entries[0].timestamp, entries[1].timestamp)
        formats = {stream: fmt for stream, _, fmt in self.transcriber.calls}
        self.assertEqual(formats, {"local": LOCAL_FORMAT, "remote": REMOTE_FORMAT})

        data = self.saved(session)
        self.assertEqual([(d["speaker"], d["text"]) for d in data],
                         [("microphone", "Hello"), ("system", "Hi there")])
        self.assertEqual(data[0]["timestamp"], data[1]["timestamp"])

        self.assertEqual(self.provider.prompts, ["[microphone]: Hello\n[system]: Hi there"])
        self.assertEqual(self.emitted, [("feedback", "Nice pacing.")])

    async def test_order_is_local_then_remote_when_remote_finishes_first(self):
        transcriber = FakeTranscriber({"local": "Hello", "remote": "Hi there"}, delays={"local": 0.05})
        session = self.make_session(transcriber)
        session.accumulators["local"].append(b"\x01" * 10)
        session.accumulators["remote"].append(b"\x02" * 16)

        await session.run_cycle()

        self.assertEqual(transcriber.completed, ["remote", "local"])
        self.assertEqual([e.speaker for e in session.ledger.entries], ["local", "remote"])

    async def test_transcriptions_run_concurrently(self):
        transcriber = FakeTranscriber({"local": "a", "remote": "b"}, delays={"local": 0.2, "remote": 0.2})
        session = self.make_session(transcriber)
        session.accumulators["local"].append(b"\x01")
        session.accumulators["remote"].append(b"\x02")

        loop = asyncio.get_running_loop()
        started = loop.time()
        await session.run_cycle()
        self.assertLess(loop.time() - started, 0.35)

    async def test_audio_arriving_mid_cycle_goes_to_next_cycle(self):
        transcriber = FakeTranscriber({"local": "first"})
        transcriber.gate = asyncio.Event()
        session = self.make_session(transcriber)
        session.accumulators["local"].append(b"A" * 100)

        cycle = asyncio.create_task(session.run_cycle())
        await asyncio.sleep(0.01)
        session.accumulators["local"].append(b"B" * 50)
        transcriber.gate.set()
        await cycle
        await session.run_cycle()

        drained = [raw for _, raw, _ in transcriber.calls]
        self.assertEqual(drained, [b"A" * 100, b"B" * 50])

    async def test_window_is_bounded(self):
        session = self.make_session(FakeTranscriber({"local": "line"}), max_transcriptions=3)
        for _ in range(5):
            session.accumulators["local"].append(b"\x01")
            await session.run_cycle()
        self.assertEqual(len(session.ledger), 5)
        self.assertEqual(self.provider.prompts[-1].count("[microphone]"), 3)

    async def test_feedback_failure_does_not_abort_cycle(self):
        session = self.make_session(FakeTranscriber({"local": "Hello"}), provider=FakeProvider(fail=True))
        session.accumulators["local"].append(b"\x01")
        with self.assertLogs("callcoach.session", level="WARNING"):
            entries = await session.run_cycle()
        self.assertEqual(len(entries), 1)
        self.assertTrue(session.ledger.path.exists())
        self.assertEqual(self.emitted, [])
        self.assertEqual(session.events.count(EventKind.FEEDBACK_FAILED), 1)

    async def test_persistence_failure_is_logged_and_cycle_continues(self):
        session = self.make_session(FakeTranscriber({"local": "Hello"}))
        self.data_dir.parent.mkdir(parents=True, exist_ok=True)
        self.data_dir.write_text("not a directory")
        session.accumulators["local"].append(b"\x01")

        with self.assertLogs("callcoach.session", level="WARNING"):
            entries = await session.run_cycle()

        self.assertEqual(len(entries), 1)
        self.assertEqual(session.events.count(EventKind.PERSISTENCE_FAILED), 1)
        self.assertEqual(len(self.provider.prompts), 1)


class TestLifecycle(SessionTestCase):

    async def test_start_spawns_both_and_is_reentrant(self):
        session = self.make_session()
        await session.start()
        self.assertIs(session.state, SessionState.RECORDING)
        self.assertEqual(self.supervisor.spawned, ["local", "remote"])
        self.assertTrue(session.scheduler.running)

        await session.start()
        self.assertEqual(self.supervisor.spawned, ["local", "remote"])
        await session.shutdown()

    async def test_shutdown_when_idle_is_noop(self):
        session = self.make_session()
        await session.shutdown()
        self.assertIs(session.state, SessionState.IDLE)
        self.assertFalse(session.ledger.path.exists())

    async def test_spawn_failure_is_fatal_and_stops_started_producer(self):
        session = self.make_session(supervisor=FakeSupervisor(fail_on="remote"))
        with self.assertLogs("callcoach.session", level="ERROR"):
            with self.assertRaises(SessionStartupError):
                await session.start()
        self.assertIs(session.state, SessionState.TERMINATED)
        self.assertEqual(self.supervisor.stopped, ["local"])
        self.assertFalse(session.scheduler.running)
        self.assertEqual(session.events.count(EventKind.PRODUCER_SPAWN_FAILED), 1)

    async def test_shutdown_drains_partial_buffers_and_summarizes(self):
        session = self.make_session(FakeTranscriber({"local": "Bye", "remote": "See you"}))
        await session.start()
        session.accumulators["local"].append(b"\x01" * 7)
        session.accumulators["remote"].append(b"\x02" * 5)

        await session.shutdown()

        self.assertIs(session.state, SessionState.TERMINATED)
        self.assertEqual(sorted(self.supervisor.stopped), ["local", "remote"])
        self.assertEqual([(e.speaker, e.text) for e in session.ledger.entries],
                         [("local", "Bye"), ("remote", "See you")])
        self.assertTrue(session.saved)
        self.assertEqual(len(self.saved(session)), 2)
        self.assertEqual(session.ledger.writes, 2)
        self.assertEqual(self.supervisor.status(session.handles["local"]).bytes_drained, 7)
        self.assertEqual([kind for kind, _ in self.emitted], ["feedback", "summary"])
        self.assertTrue(self.provider.prompts[-1].startswith("SUMMARY\n"))

        await session.shutdown()
        self.assertEqual(len(self.emitted), 2)

    async def test_summary_disabled(self):
        session = self.make_session(FakeTranscriber({"local": "Bye"}), session_summary=False)
        await session.start()
        session.accumulators["local"].append(b"\x01")
        await session.shutdown()
        self.assertEqual([kind for kind, _ in self.emitted], ["feedback"])

    async def test_interrupt_during_in_flight_cycle(self):
        transcriber = FakeTranscriber({"local": "Hello", "remote": "Hi there"})
        transcriber.gate = asyncio.Event()
        session = self.make_session(transcriber)
        await session.start()

        session.accumulators["local"].append(b"L" * 100)
        session.accumulators["remote"].append(b"R" * 100)
        in_flight = asyncio.create_task(session.scheduler.run_cycle())
        await asyncio.sleep(0.01)
        self.assertEqual(len(transcriber.calls), 2)

        # audio keeps arriving while the cycle waits on the network
        session.accumulators["local"].append(b"l" * 30)
        shutdown = asyncio.create_task(session.shutdown())
        await asyncio.sleep(0.05)
        self.assertFalse(shutdown.done())
        self.assertIs(session.state, SessionState.SHUTTING_DOWN)

        transcriber.gate.set()
        await asyncio.gather(in_flight, shutdown)

        self.assertEqual(session.scheduler.cycles_run, 2)
        self.assertEqual([raw for _, raw, _ in transcriber.calls], [b"L" * 100, b"R" * 100, b"l" * 30])
        self.assertEqual([e.speaker for e in session.ledger.entries], ["local", "remote", "local"])
        self.assertEqual(len(self.saved(session)), 3)
        self.assertIs(session.state, SessionState.TERMINATED)

    async def test_run_until_stop_event(self):
        session = self.make_session(FakeTranscriber({"local": "Hi"}))
        stop = asyncio.Event()
        runner = asyncio.create_task(session.run(stop))
        await asyncio.sleep(0.01)
        session.accumulators["local"].append(b"\x01" * 4)
        stop.set()
        await runner
        self.assertIs(session.state, SessionState.TERMINATED)
        self.assertEqual(len(session.ledger), 1)

    async def test_concurrent_start_spawns_once(self):
        session = self.make_session(supervisor=FakeSupervisor(spawn_delay=0.01))
        await asyncio.gather(session.start(), session.start())
        self.assertEqual(self.supervisor.spawned, ["local", "remote"])
        self.assertIs(session.state, SessionState.RECORDING)
        await session.shutdown()

    async def test_summary_failure_still_terminates_and_saves(self):
        provider = FakeProvider(error=TypeError("sequence item 0: expected str instance, NoneType found"))
        session = self.make_session(FakeTranscriber({"local": "Bye"}), provider=provider)
        await session.start()
        session.accumulators["local"].append(b"\x01")

        await session.shutdown()

        self.assertIs(session.state, SessionState.TERMINATED)
        self.assertTrue(session.saved)
        self.assertEqual(len(self.saved(session)), 1)
        self.assertEqual(self.emitted, [])
        self.assertEqual(session.events.count(EventKind.FEEDBACK_FAILED), 2)

    async def test_final_cycle_error_still_persists_and_terminates(self):
        class BrokenTranscriber(FakeTranscriber):
            async def transcribe(self, raw, fmt, stream=None):
                raise RuntimeError("transcriber bug")

        session = self.make_session(BrokenTranscriber())
        await session.start()
        session.ledger.extend([TranscriptEntry(STARTED, "local", "Earlier")])
        session.accumulators["local"].append(b"\x01")

        with self.assertRaises(RuntimeError):
            await session.shutdown()

        self.assertIs(session.state, SessionState.TERMINATED)
        self.assertTrue(session.saved)
        self.assertEqual([d["text"] for d in self.saved(session)], ["Earlier"])


@unittest.skipIf(sys.platform == "win32", "uses POSIX process termination")
class TestSessionWithProcesses(SessionTestCase):
    """End to end with real child processes as producers."""

    async def test_every_produced_byte_is_transcribed_exactly_once(self):
        code = (
            "import sys, time\n"
            "for i in range(40):\n"
            "    sys.stdout.buffer.write(bytes([i]) * 64); sys.stdout.flush(); time.sleep(0.005)\n"
        )
        command = f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"
        transcriber = FakeTranscriber()
        self.events = EventBus()
        session = Session(
            SessionSettings(
                interval_ms=50,
                data_dir=str(self.data_dir),
                local_command=command,
                remote_command=command,
                session_summary=False,
            ),
            transcriber,
            FeedbackEngine(FakeProvider(), events=self.events),
            events=self.events,
            supervisor=ProducerSupervisor(self.events),
            emit=lambda kind, text: None,
        )

        await session.start()
        await asyncio.sleep(0.6)
        await session.shutdown()

        expected = b"".join(bytes([i]) * 64 for i in range(40))
        for stream in ("local", "remote"):
            got = b"".join(raw for s, raw, _ in transcriber.calls if s == stream)
            self.assertEqual(got, expected)


if __name__ == "__main__":
    unittest.main()
