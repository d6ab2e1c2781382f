"""Tests for the session controller, including the end-to-end scenarios."""

from __future__ import annotations

import asyncio
from typing import Any
import unittest

from llama_desk.controller import (
    GENERATING_STATUS,
    MODEL_LOAD_ERROR_STATUS,
    NO_MODELS_STATUS,
    SessionController,
)
from llama_desk.events import (
    ActiveModelChanged,
    ConversationCleared,
    MessageAppended,
    MessageResolved,
    StatusChanged,
    StatusState,
)
from llama_desk.exceptions import BackendFailure, NotFoundError
from llama_desk.message_store import (
    FAILURE_PLACEHOLDER,
    STOPPED_PLACEHOLDER,
    MessageState,
    Role,
    Success,
)
from llama_desk.models import Model, ModelRegistry
from llama_desk.state import GenerationStatus

LLAMA = Model(id="1", name="Llama 3 8B", path="../models/llama3-8b.gguf", size_gb=4.7)
MISTRAL = Model(id="2", name="Mistral 7B", path="../models/mistral-7b.gguf", size_gb=4.1)


class GatedBackend:
    """Fake backend whose calls finish only when the test releases them."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self._futures: list[asyncio.Future[str]] = []

    async def generate(self, prompt: str, model_id: str) -> str:
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self.calls.append((prompt, model_id))
        self._futures.append(future)
        return await future

    def reply(self, index: int, text: str) -> None:
        self._futures[index].set_result(text)

    def fail(self, index: int, exc: Exception) -> None:
        self._futures[index].set_exception(exc)


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.backend = GatedBackend()
        self.controller = SessionController(self.backend, ModelRegistry())
        self.notes: list[Any] = []
        self.controller.bus.subscribe_all(self.notes.append)

    async def asyncTearDown(self) -> None:
        await self.controller.aclose()

    async def settle(self) -> None:
        """Let dispatched tasks reach the backend."""
        for _ in range(3):
            await asyncio.sleep(0)

    def notes_of(self, kind: type) -> list[Any]:
        return [note for note in self.notes if isinstance(note, kind)]


class ScenarioTests(ControllerTestCase):
    """End-to-end scenarios for submit, busy, stop and empty registry."""

    async def test_scenario_a_successful_generation(self) -> None:
        await self.controller.register_models([LLAMA])
        self.notes.clear()

        result = await self.controller.submit("hello")
        self.assertTrue(result.accepted)
        self.assertEqual(self.controller.status, GenerationStatus.GENERATING)
        user, pending = self.controller.messages
        self.assertEqual((user.role, user.content), (Role.USER, "hello"))
        self.assertEqual(pending.state, MessageState.PENDING)

        await self.settle()
        self.assertEqual(self.backend.calls, [("hello", "1")])
        self.backend.reply(0, "Hi there")
        await self.controller.wait_idle()

        self.assertEqual(self.controller.status, GenerationStatus.IDLE)
        self.assertEqual(pending.state, MessageState.COMPLETE)
        self.assertEqual(pending.content, "Hi there")
        self.assertEqual(
            [type(note) for note in self.notes],
            [
                MessageAppended,
                MessageAppended,
                StatusChanged,
                MessageResolved,
                StatusChanged,
            ],
        )
        self.assertEqual(
            self.notes[2], StatusChanged(GENERATING_STATUS, StatusState.LOADING)
        )
        self.assertEqual(self.notes[-1], StatusChanged("Llama 3 8B", StatusState.READY))

    async def test_scenario_b_submit_while_generating_is_rejected(self) -> None:
        await self.controller.register_models([LLAMA])
        first = await self.controller.submit("a")
        self.assertTrue(first.accepted)
        self.notes.clear()

        second = await self.controller.submit("b")
        self.assertFalse(second.accepted)
        self.assertEqual(second.reason, "busy")
        self.assertTrue(second.message)
        self.assertEqual(len(self.controller.messages), 2)
        self.assertEqual(self.controller.messages[0].content, "a")
        self.assertEqual(self.controller.request_token, first.token)
        self.assertEqual(self.notes, [])

        await self.settle()
        self.assertEqual(len(self.backend.calls), 1)

    async def test_scenario_c_late_result_after_stop_is_discarded(self) -> None:
        await self.controller.register_models([LLAMA])
        await self.controller.submit("a")
        await self.settle()

        self.assertTrue(await self.controller.stop())
        self.assertEqual(self.controller.status, GenerationStatus.IDLE)
        pending = self.controller.messages[1]
        self.assertEqual(pending.content, STOPPED_PLACEHOLDER)
        self.assertEqual(self.controller.inflight_count, 1)
        resolved_before = len(self.notes_of(MessageResolved))

        with self.assertLogs("llama_desk.controller", level="INFO") as logs:
            self.backend.reply(0, "late")
            await self.controller.wait_idle()

        self.assertTrue(
            any("generation.stale_discarded" in line for line in logs.output)
        )
        self.assertEqual(pending.content, STOPPED_PLACEHOLDER)
        self.assertEqual(len(self.notes_of(MessageResolved)), resolved_before)
        self.assertEqual(self.controller.inflight_count, 0)

    async def test_scenario_d_empty_registry_rejects_submit(self) -> None:
        result = await self.controller.submit("hello")
        self.assertFalse(result.accepted)
        self.assertEqual(result.reason, "no_active_model")
        self.assertEqual(self.controller.messages, ())
        self.assertEqual(self.controller.status, GenerationStatus.IDLE)
        self.assertEqual(self.backend.calls, [])


class ControllerBehaviourTests(ControllerTestCase):
    """Further properties of the controller wiring."""

    async def test_empty_prompt_is_rejected(self) -> None:
        await self.controller.register_models([LLAMA])
        self.notes.clear()
        result = await self.controller.submit("   ")
        self.assertFalse(result.accepted)
        self.assertEqual(result.reason, "empty_prompt")
        self.assertEqual(self.controller.messages, ())
        self.assertEqual(self.notes, [])

    async def test_late_result_does_not_leak_into_next_generation(self) -> None:
        await self.controller.register_models([LLAMA])
        await self.controller.submit("a")
        await self.settle()
        await self.controller.stop()

        second = await self.controller.submit("b")
        self.assertTrue(second.accepted)
        await self.settle()

        self.backend.reply(0, "late a")
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        b_reply = self.controller.messages[3]
        self.assertEqual(b_reply.state, MessageState.PENDING)
        self.assertEqual(self.controller.status, GenerationStatus.GENERATING)

        self.backend.reply(1, "b reply")
        await self.controller.wait_idle()
        self.assertEqual(b_reply.content, "b reply")
        self.assertEqual(self.controller.messages[1].content, STOPPED_PLACEHOLDER)
        self.assertEqual(len(self.controller.messages), 4)

    async def test_backend_failure_marks_message_and_allows_retry(self) -> None:
        await self.controller.register_models([LLAMA])
        await self.controller.submit("a")
        await self.settle()

        with self.assertLogs("llama_desk", level="WARNING"):
            self.backend.fail(0, BackendFailure("model load failure: /secret/path"))
            await self.controller.wait_idle()

        failed = self.controller.messages[1]
        self.assertEqual(failed.state, MessageState.FAILED)
        self.assertEqual(failed.content, FAILURE_PLACEHOLDER)
        self.assertEqual(self.controller.status, GenerationStatus.IDLE)

        retry = await self.controller.submit("a")
        self.assertTrue(retry.accepted)

    async def test_unexpected_backend_exception_is_a_failure(self) -> None:
        await self.controller.register_models([LLAMA])
        await self.controller.submit("a")
        await self.settle()
        with self.assertLogs("llama_desk", level="WARNING"):
            self.backend.fail(0, RuntimeError("segfault"))
            await self.controller.wait_idle()
        self.assertEqual(self.controller.messages[1].state, MessageState.FAILED)
        self.assertFalse(self.controller.is_generating)

    async def test_stop_while_idle_returns_false(self) -> None:
        await self.controller.register_models([LLAMA])
        self.notes.clear()
        self.assertFalse(await self.controller.stop())
        self.assertEqual(self.notes, [])

    async def test_unknown_token_never_mutates_store(self) -> None:
        await self.controller.register_models([LLAMA])
        await self.controller.submit("a")
        applied = await self.controller.backend_resolved("bogus", Success("x"))
        self.assertFalse(applied)
        self.assertEqual(self.controller.messages[1].state, MessageState.PENDING)
        self.assertTrue(self.controller.is_generating)

    async def test_new_conversation_while_generating_stops_then_clears(self) -> None:
        await self.controller.register_models([LLAMA])
        await self.controller.submit("a")
        await self.settle()
        self.notes.clear()

        await self.controller.new_conversation()
        self.assertEqual(self.controller.messages, ())
        self.assertEqual(self.controller.status, GenerationStatus.IDLE)
        self.assertEqual(
            [type(note) for note in self.notes],
            [MessageResolved, StatusChanged, ConversationCleared, StatusChanged],
        )

        self.backend.reply(0, "late")
        await self.controller.wait_idle()
        self.assertEqual(self.controller.messages, ())

    async def test_new_conversation_while_idle_clears(self) -> None:
        await self.controller.register_models([LLAMA])
        await self.controller.submit("a")
        await self.settle()
        self.backend.reply(0, "ok")
        await self.controller.wait_idle()

        await self.controller.new_conversation()
        self.assertEqual(self.controller.messages, ())
        self.assertEqual(len(self.notes_of(ConversationCleared)), 1)

    async def test_select_model_emits_change_and_status(self) -> None:
        await self.controller.register_models([LLAMA, MISTRAL])
        self.notes.clear()
        model = await self.controller.select_model("2")
        self.assertEqual(model, MISTRAL)
        self.assertEqual(
            self.notes,
            [
                ActiveModelChanged(MISTRAL),
                StatusChanged("Mistral 7B", StatusState.READY),
            ],
        )

    async def test_select_unknown_model_raises_without_notifications(self) -> None:
        await self.controller.register_models([LLAMA])
        self.notes.clear()
        with self.assertRaises(NotFoundError):
            await self.controller.select_model("missing")
        self.assertEqual(self.controller.active_model, LLAMA)
        self.assertEqual(self.notes, [])

    async def test_model_switch_during_generation_keeps_loading_status(self) -> None:
        await self.controller.register_models([LLAMA, MISTRAL])
        await self.controller.submit("a")
        await self.settle()
        self.notes.clear()

        await self.controller.select_model("2")
        self.assertEqual(self.notes, [ActiveModelChanged(MISTRAL)])
        self.assertEqual(self.backend.calls, [("a", "1")])

        self.backend.reply(0, "ok")
        await self.controller.wait_idle()
        self.assertEqual(self.notes[-1], StatusChanged("Mistral 7B", StatusState.READY))

    async def test_bootstrap_registers_source_models(self) -> None:
        active = await self.controller.bootstrap(lambda: [LLAMA, MISTRAL])
        self.assertEqual(active, LLAMA)
        self.assertEqual(
            self.notes,
            [ActiveModelChanged(LLAMA), StatusChanged("Llama 3 8B", StatusState.READY)],
        )

    async def test_bootstrap_with_empty_source_reports_no_models(self) -> None:
        active = await self.controller.bootstrap(lambda: [])
        self.assertIsNone(active)
        self.assertEqual(self.notes, [StatusChanged(NO_MODELS_STATUS, StatusState.READY)])

    async def test_bootstrap_failure_reports_error_status(self) -> None:
        def broken_source() -> list[Model]:
            raise OSError("models directory missing")

        with self.assertLogs("llama_desk.controller", level="ERROR"):
            active = await self.controller.bootstrap(broken_source)
        self.assertIsNone(active)
        self.assertEqual(len(self.controller.registry), 0)
        self.assertEqual(
            self.notes, [StatusChanged(MODEL_LOAD_ERROR_STATUS, StatusState.READY)]
        )

    async def test_sequential_submissions_append_one_pair_each(self) -> None:
        await self.controller.register_models([LLAMA])
        for index, prompt in enumerate(["one", "two", "three"]):
            result = await self.controller.submit(prompt)
            self.assertTrue(result.accepted)
            rejected = await self.controller.submit("extra")
            self.assertFalse(rejected.accepted)
            await self.settle()
            self.backend.reply(index, f"reply {index}")
            await self.controller.wait_idle()
        self.assertEqual(len(self.controller.messages), 6)
        self.assertEqual(
            [m.content for m in self.controller.messages],
            ["one", "reply 0", "two", "reply 1", "three", "reply 2"],
        )

    async def test_concurrent_submits_accept_exactly_one(self) -> None:
        await self.controller.register_models([LLAMA])
        results = await asyncio.gather(
            *(self.controller.submit(f"p{i}") for i in range(10))
        )
        self.assertEqual(sum(1 for result in results if result.accepted), 1)
        self.assertEqual(len(self.controller.messages), 2)


if __name__ == "__main__":
    unittest.main()
