import json
import unittest
from unittest.mock import AsyncMock, MagicMock

from trip_concierge.agent.aggregator import build_payload
from trip_concierge.agent.memory import InMemoryMemory
from trip_concierge.agent.orchestrator import AgentOrchestrator, build_task, merge_result
from trip_concierge.capabilities.protocol import CapabilityName, Failure, Success
from trip_concierge.errors import CapabilityFailure
from trip_concierge.schemas import FinalResponse, LogisticsPlan, TripRequest
from tests.fakes import (
    IMAGE_URL,
    LOGISTICS_PLAN,
    PARIS_REQUEST,
    WEATHER_DESCRIPTION,
    FakeLLM,
    RecordingTransport,
    both_capabilities_reply,
    make_images,
    make_server,
    plan_with,
    tool_call,
)


class TestOrchestrator(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.trip = TripRequest(**PARIS_REQUEST)
        self.memory = InMemoryMemory()

    def make_agent(self, llm, **server_kwargs):
        return AgentOrchestrator(llm, make_server(llm, **server_kwargs))

    def test_task_asks_both_questions(self):
        task = build_task(self.trip)
        self.assertIn("best flight and hotel", task)
        self.assertIn("current weather in Paris", task)
        self.assertIn("$3000", task)

    async def test_both_capabilities_in_one_round(self):
        llm = FakeLLM(replies=[both_capabilities_reply()])
        final = await self.make_agent(llm).run(self.trip, memory=self.memory)

        # Terminal as soon as both resolved: no second dispatch
        self.assertEqual(len(llm.dispatches), 1)
        self.assertTrue(llm.dispatches[0]["require_tool"])
        self.assertEqual(final.logisticsPlan.hotelPlan.stars, 4)
        self.assertEqual(final.weather.description, WEATHER_DESCRIPTION["description"])
        self.assertEqual(final.weather.imageUrl, IMAGE_URL)
        self.assertIsNone(final.failureReason)

    async def test_results_merged_into_conversation(self):
        llm = FakeLLM(replies=[both_capabilities_reply()])
        await self.make_agent(llm).run(self.trip, memory=self.memory)

        messages = self.memory.get_messages()
        roles = [m["role"] for m in messages]
        self.assertEqual(roles, ["system", "user", "assistant", "tool", "tool"])
        self.assertEqual(messages[3]["tool_call_id"], "call_1")
        self.assertEqual(json.loads(messages[3]["content"])["hotelPlan"]["stars"], 4)
        self.assertEqual(messages[4]["name"], "getCurrentWeather")

    async def test_capabilities_offered_to_model(self):
        llm = FakeLLM(replies=[both_capabilities_reply()])
        await self.make_agent(llm).run(self.trip)
        names = [tool["name"] for tool in llm.dispatches[0]["tools"]]
        self.assertEqual(names, ["generateLogisticsPlan", "getCurrentWeather"])

    async def test_capabilities_across_two_rounds(self):
        reply = both_capabilities_reply()
        first = {"content": None, "tool_calls": [reply["tool_calls"][1]]}
        second = {"content": None, "tool_calls": [reply["tool_calls"][0]]}
        llm = FakeLLM(replies=[first, second])
        final = await self.make_agent(llm).run(self.trip, memory=self.memory)

        self.assertEqual(len(llm.dispatches), 2)
        self.assertFalse(llm.dispatches[1]["require_tool"])
        # Second round sees the weather result from the first
        self.assertIn("tool", [m["role"] for m in llm.dispatches[1]["messages"]])
        self.assertIsNotNone(final.logisticsPlan)
        self.assertIsNotNone(final.weather)
        self.assertIsNone(final.failureReason)

    async def test_stop_without_tools_is_refusal(self):
        llm = FakeLLM(replies=[{"content": "I cannot help with that.", "tool_calls": None}])
        final = await self.make_agent(llm).run(self.trip)
        payload = build_payload(final)

        self.assertIsNone(payload["logisticsPlanRecommendation"])
        self.assertIsNone(payload["currentWeather"])
        self.assertEqual(payload["failureReason"], "I cannot help with that.")

    async def test_partial_stop_is_not_retried(self):
        weather_only = {"content": None, "tool_calls": [tool_call("call_2", "getCurrentWeather", {"destination": "Paris"})]}
        llm = FakeLLM(replies=[weather_only, {"content": None, "tool_calls": None}])
        final = await self.make_agent(llm).run(self.trip)

        self.assertEqual(len(llm.dispatches), 2)
        self.assertIsNone(final.logisticsPlan)
        self.assertIsNotNone(final.weather)
        self.assertIn("generateLogisticsPlan", final.failureReason)

    async def test_dispatch_error_still_returns(self):
        llm = FakeLLM(replies=[RuntimeError("rate limited")])
        final = await self.make_agent(llm).run(self.trip)
        self.assertEqual(final.failureReason, "Error: rate limited")
        self.assertIsNone(final.logisticsPlan)

    async def test_schema_violation_becomes_failure(self):
        llm = FakeLLM(
            replies=[both_capabilities_reply()],
            logistics=json.dumps(plan_with(activitiesToDo=["🗼", "🥐", "🚤", "🍷"])),
        )
        final = await self.make_agent(llm).run(self.trip)

        self.assertIsNone(final.logisticsPlan)
        self.assertIn("activitiesToDo", final.failureReason)
        # The weather capability is unaffected
        self.assertEqual(final.weather.description, WEATHER_DESCRIPTION["description"])

    async def test_geocode_miss_keeps_logistics(self):
        llm = FakeLLM(replies=[both_capabilities_reply()])
        agent = self.make_agent(llm, transport=RecordingTransport(geocode=[]))
        payload = build_payload(await agent.run(self.trip))

        self.assertIsNotNone(payload["logisticsPlanRecommendation"])
        self.assertIsNone(payload["currentWeather"])
        self.assertIsNone(payload["currentWeatherImageUrl"])
        self.assertIn("unresolvable destination", payload["failureReason"])

    async def test_image_failure_is_not_a_failure_reason(self):
        llm = FakeLLM(replies=[both_capabilities_reply()])
        images = make_images(error=CapabilityFailure("image generation failed"))
        payload = build_payload(await self.make_agent(llm, images=images).run(self.trip))

        self.assertEqual(payload["currentWeather"], WEATHER_DESCRIPTION["description"])
        self.assertIsNone(payload["currentWeatherImageUrl"])
        self.assertIsNone(payload["failureReason"])

    async def test_description_failure_is_reported(self):
        llm = FakeLLM(replies=[both_capabilities_reply()], weather="not json at all")
        payload = build_payload(await self.make_agent(llm).run(self.trip))

        self.assertIsNone(payload["currentWeather"])
        self.assertEqual(payload["currentWeatherImageUrl"], IMAGE_URL)
        self.assertIn("getCurrentWeather: weather description failed", payload["failureReason"])
        self.assertIsNotNone(payload["logisticsPlanRecommendation"])

    async def test_server_is_not_called_for_empty_round(self):
        server = MagicMock()
        server.list_tools.return_value = []
        server.call_tool = AsyncMock()
        llm = FakeLLM(replies=[{"content": "Nothing to do", "tool_calls": None}])

        final = await AgentOrchestrator(llm, server).run(self.trip)
        server.call_tool.assert_not_called()
        self.assertEqual(final.failureReason, "Nothing to do")

    async def test_invalid_arguments_fail_without_invoking(self):
        bad_args = {"content": None, "tool_calls": [
            tool_call("call_1", "generateLogisticsPlan", {"destination": "Paris"}),
            tool_call("call_2", "getCurrentWeather", {"destination": "Paris"}),
        ]}
        llm = FakeLLM(replies=[bad_args])
        final = await self.make_agent(llm).run(self.trip)

        self.assertIsNone(final.logisticsPlan)
        self.assertIn("generateLogisticsPlan", final.failureReason)
        # Only the weather description prompt reached the model
        self.assertEqual(len(llm.prompts), 1)

    async def test_unknown_capability_is_answered_not_invoked(self):
        unknown = {"content": None, "tool_calls": [tool_call("call_9", "bookFlight", {})]}
        llm = FakeLLM(replies=[unknown, both_capabilities_reply()])
        final = await self.make_agent(llm).run(self.trip, memory=self.memory)

        tool_turns = [m for m in self.memory.get_messages() if m["role"] == "tool"]
        self.assertEqual(tool_turns[0]["content"], "Error: unknown capability 'bookFlight'")
        self.assertIsNotNone(final.logisticsPlan)
        self.assertIsNotNone(final.weather)

    async def test_duplicate_requests_invoke_once(self):
        reply = both_capabilities_reply()
        reply["tool_calls"].append(tool_call("call_3", "getCurrentWeather", {"destination": "Paris"}))
        llm = FakeLLM(replies=[reply])
        images = make_images()
        await self.make_agent(llm, images=images).run(self.trip, memory=self.memory)

        images.generate.assert_awaited_once()
        tool_turns = [m for m in self.memory.get_messages() if m["role"] == "tool"]
        self.assertEqual(len(tool_turns), 3)
        self.assertEqual(tool_turns[1]["content"], tool_turns[2]["content"])

    async def test_round_limit_terminates(self):
        looping = {"content": None, "tool_calls": [tool_call("call_x", "bookFlight", {})]}
        llm = FakeLLM(replies=[looping] * 10)
        agent = AgentOrchestrator(llm, make_server(llm), max_rounds=3)
        final = await agent.run(self.trip)

        self.assertEqual(len(llm.dispatches), 3)
        self.assertIsNotNone(final.failureReason)

    async def test_capability_exception_is_isolated(self):
        llm = FakeLLM(replies=[both_capabilities_reply()])
        server = make_server(llm)
        server.images.generate = AsyncMock(return_value=IMAGE_URL)
        server.weather.geocode = AsyncMock(side_effect=KeyError("lat"))
        final = await AgentOrchestrator(llm, server).run(self.trip)

        self.assertIsNotNone(final.logisticsPlan)
        self.assertIsNone(final.weather)
        self.assertIn("getCurrentWeather", final.failureReason)


class TestMergeResult(unittest.TestCase):
    def test_failure_sets_reason_without_touching_fields(self):
        result = Failure(capability=CapabilityName.GET_WEATHER, call_id="call_2", reason="boom")
        merged = merge_result(FinalResponse(), result)
        self.assertIsNone(merged.weather)
        self.assertEqual(merged.failureReason, "boom")

    def test_mismatched_payload_is_rejected(self):
        result = Success(capability=CapabilityName.GET_WEATHER, call_id="call_2",
                         payload=LogisticsPlan.model_validate(LOGISTICS_PLAN))
        with self.assertRaises(TypeError):
            merge_result(FinalResponse(), result)

    def test_never_all_null_without_reason(self):
        final = FinalResponse()
        payload = build_payload(final.with_failure("no data"))
        self.assertEqual(payload["failureReason"], "no data")


class TestAggregator(unittest.TestCase):
    def test_defaults_to_null(self):
        self.assertEqual(build_payload(FinalResponse()), {
            "logisticsPlanRecommendation": None,
            "currentWeather": None,
            "currentWeatherImageUrl": None,
            "failureReason": None,
        })


if __name__ == "__main__":
    unittest.main()
