import asyncio
import json
import sys
import unittest
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from autoflow.agents.base import Completion
from autoflow.analysis.complexity import ComplexityAnalysis
from autoflow.analysis.context import optimize_context
from autoflow.connectors.discovery import NodeConfigVerdict
from autoflow.errors import AssemblyError, CompletionError, DiscoveryError
from autoflow.monitoring.cost import CostMonitor
from autoflow.workflow.generator import Fallback, HybridGenerator, Intelligent
from autoflow.workflow.schema import BusinessContext, OrchestrationPlan
from autoflow.workflow.validator import validate_workflow

COMPLEX_PLAN = {
    "workflowName": "Support Triage",
    "description": "Classify incoming support emails and alert the team",
    "triggers": [{"type": "email"}],
    "steps": [
        {"id": "classify", "name": "Classify", "type": "openai", "description": "Classify the ticket"},
        {"id": "alert", "name": "Alert Team", "type": "slack"},
    ],
}


class FakeDiscovery:
    """Stands in for DiscoveryClient with scripted answers."""

    def __init__(self, *, connect_delay=0.0, essentials=None, essentials_error=None, verdict=None):
        self.connect_delay = connect_delay
        self.essentials = essentials or {}
        self.essentials_error = essentials_error
        self.verdict = verdict or NodeConfigVerdict(valid=True)
        self.closed = False
        self.validated: list[tuple[str, dict]] = []

    async def connect(self):
        await asyncio.sleep(self.connect_delay)

    async def search_node_kinds(self, query, limit=5):
        return ["n8n-nodes-base.set"]

    async def get_node_essentials(self, node_type):
        if self.essentials_error is not None:
            raise self.essentials_error
        return self.essentials.get(node_type, {"required": [], "defaults": {}})

    async def validate_node_configuration(self, node_type, parameters):
        self.validated.append((node_type, parameters))
        return self.verdict

    async def aclose(self):
        self.closed = True


class FakeCompletion:
    def __init__(self, text: str = "", error: Exception | None = None):
        self.text = text
        self.error = error
        self.prompts: list[str] = []
        self.system_prompts: list[str] = []

    async def complete(self, prompt, system_prompt, model):
        self.prompts.append(prompt)
        self.system_prompts.append(system_prompt)
        if self.error is not None:
            raise self.error
        return Completion(text=self.text, model=model, input_tokens=1200, output_tokens=300)


class HybridGeneratorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.plan = OrchestrationPlan.model_validate(COMPLEX_PLAN)
        self.analysis = ComplexityAnalysis(
            score=7, complexity="complex", recommended_model="claude-3-7-sonnet", reasoning=[]
        )
        self.descriptor = optimize_context(self.plan, self.analysis)

    def _generator(self, discovery=None, **kwargs) -> HybridGenerator:
        factory = (lambda: discovery) if discovery is not None else None
        return HybridGenerator(discovery_factory=factory, connect_timeout=0.05, **kwargs)

    async def test_intelligent_path_with_reachable_discovery(self):
        discovery = FakeDiscovery(essentials={"n8n-nodes-base.openAi": {"required": ["model"], "typeVersion": 2}})
        outcome = await self._generator(discovery).generate(self.plan, self.analysis, self.descriptor)

        self.assertIsInstance(outcome, Intelligent)
        self.assertEqual(outcome.strategy, "intelligent")
        self.assertEqual(outcome.graph.meta["strategyUsed"], "intelligent")
        self.assertEqual(outcome.graph.node_by_name("Classify").type_version, 2)
        self.assertTrue(validate_workflow(outcome.graph).valid)
        self.assertTrue(discovery.closed)
        self.assertEqual(len(discovery.validated), 3)

    async def test_connect_timeout_falls_back(self):
        discovery = FakeDiscovery(connect_delay=1.0)
        outcome = await self._generator(discovery).generate(self.plan, self.analysis, self.descriptor)

        self.assertIsInstance(outcome, Fallback)
        self.assertIn("unreachable", outcome.reason)
        self.assertEqual(outcome.graph.meta["strategyUsed"], "fallback")
        self.assertEqual(outcome.graph.meta["fallbackReason"], outcome.reason)
        self.assertTrue(validate_workflow(outcome.graph).valid)
        self.assertTrue(discovery.closed)

    async def test_discovery_error_falls_back(self):
        discovery = FakeDiscovery(essentials_error=DiscoveryError("essentials unavailable"))
        outcome = await self._generator(discovery).generate(self.plan, self.analysis, self.descriptor)
        self.assertIsInstance(outcome, Fallback)
        self.assertIn("essentials unavailable", outcome.reason)

    async def test_unfilled_required_parameter_falls_back(self):
        discovery = FakeDiscovery(essentials={"n8n-nodes-base.slack": {"required": ["blocksUi"]}})
        outcome = await self._generator(discovery).generate(self.plan, self.analysis, self.descriptor)
        self.assertIsInstance(outcome, Fallback)
        self.assertIn("blocksUi", outcome.reason)

    async def test_rejected_configuration_falls_back(self):
        discovery = FakeDiscovery(verdict=NodeConfigVerdict(valid=False, errors=["bad channel"]))
        outcome = await self._generator(discovery).generate(self.plan, self.analysis, self.descriptor)
        self.assertIsInstance(outcome, Fallback)
        self.assertIn("bad channel", outcome.reason)

    async def test_unconfigured_discovery_falls_back(self):
        outcome = await self._generator().generate(self.plan, self.analysis, self.descriptor)
        self.assertIsInstance(outcome, Fallback)
        self.assertEqual(outcome.reason, "discovery service not configured")

    async def test_disabled_ai_never_contacts_discovery(self):
        calls = []

        def factory():
            calls.append(1)
            return FakeDiscovery()

        generator = HybridGenerator(discovery_factory=factory, ai_enabled=False)
        outcome = await generator.generate(self.plan, self.analysis, self.descriptor)
        self.assertIsInstance(outcome, Fallback)
        self.assertEqual(calls, [])

    async def test_simple_general_plan_is_disqualified(self):
        plan = OrchestrationPlan.model_validate(
            {"triggers": [{"type": "schedule"}], "steps": [{"id": "a", "name": "Tidy", "type": "function"}]}
        )
        analysis = ComplexityAnalysis(score=0, complexity="simple", recommended_model="claude-3-5-sonnet")
        descriptor = optimize_context(plan, analysis)
        outcome = await self._generator(FakeDiscovery()).generate(plan, analysis, descriptor)
        self.assertIsInstance(outcome, Fallback)
        self.assertIn("deterministic assembly suffices", outcome.reason)

    async def test_drafted_parameters_are_applied_and_costed(self):
        drafted = {"parameters": {"alert": {"channel": "#support", "text": "=New ticket {{$json.subject}}"}}}
        completion = FakeCompletion(text=f"Here you go:\n```json\n{json.dumps(drafted)}\n```")
        monitor = CostMonitor()
        generator = self._generator(FakeDiscovery(), completion=completion, cost_monitor=monitor)

        outcome = await generator.generate(self.plan, self.analysis, self.descriptor, job_id="job-9")

        self.assertIsInstance(outcome, Intelligent)
        self.assertEqual(outcome.graph.node_by_name("Alert Team").parameters["channel"], "#support")
        records = monitor.records()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].model, "claude-3-7-sonnet")
        self.assertEqual(records[0].complexity, "complex")
        self.assertEqual(records[0].job_id, "job-9")
        self.assertIn("Node documentation", completion.prompts[0])

    async def test_malformed_completion_falls_back(self):
        generator = self._generator(FakeDiscovery(), completion=FakeCompletion(text="no json here"))
        outcome = await generator.generate(self.plan, self.analysis, self.descriptor)
        self.assertIsInstance(outcome, Fallback)
        self.assertIn("CompletionError", outcome.reason)

    async def test_completion_failure_falls_back(self):
        completion = FakeCompletion(error=CompletionError("completion timed out after 45.0s"))
        outcome = await self._generator(FakeDiscovery(), completion=completion).generate(
            self.plan, self.analysis, self.descriptor
        )
        self.assertIsInstance(outcome, Fallback)
        self.assertIn("timed out", outcome.reason)

    async def test_construction_error_survives_both_strategies(self):
        plan = OrchestrationPlan.model_validate({"triggers": [{"type": "webhook"}], "steps": []})
        with self.assertRaises(AssemblyError):
            await self._generator(FakeDiscovery()).generate(plan, self.analysis, self.descriptor)

    async def test_non_numeric_type_version_falls_back(self):
        discovery = FakeDiscovery(essentials={"n8n-nodes-base.openAi": {"required": [], "typeVersion": None}})
        outcome = await self._generator(discovery).generate(
            self.plan, self.analysis, self.descriptor, context=BusinessContext(industry="Finance")
        )
        self.assertIsInstance(outcome, Fallback)
        self.assertIn("typeVersion", outcome.reason)
        self.assertTrue(validate_workflow(outcome.graph).valid)

    async def test_drafted_scalar_options_fall_back(self):
        plan = OrchestrationPlan.model_validate(
            {
                "workflowName": "Enrich Leads",
                "description": "Summarize each lead with AI and push it to the CRM",
                "triggers": [{"type": "webhook"}],
                "steps": [
                    {"id": "summarize", "name": "Summarize", "type": "openai"},
                    {"id": "push", "name": "Push", "type": "http"},
                ],
            }
        )
        drafted = {"parameters": {"push": {"options": "default"}}}
        generator = self._generator(FakeDiscovery(), completion=FakeCompletion(text=json.dumps(drafted)))

        outcome = await generator.generate(plan, self.analysis, optimize_context(plan, self.analysis))

        self.assertIsInstance(outcome, Fallback)
        self.assertIn("options", outcome.reason)
        self.assertEqual(outcome.graph.node_by_name("Push").parameters["options"]["retryOnFail"], True)

    async def test_drafting_prompt_carries_business_focus_and_patterns(self):
        completion = FakeCompletion(text='{"parameters": {}}')
        generator = self._generator(FakeDiscovery(), completion=completion)

        outcome = await generator.generate(
            self.plan, self.analysis, self.descriptor, context=BusinessContext(industry="Finance", department="Support")
        )

        self.assertIsInstance(outcome, Intelligent)
        self.assertIn("Business context: Finance | Support", completion.system_prompts[0])
        self.assertIn("Customer Support Email Processing", completion.prompts[0])

    async def test_oversized_prompt_drops_node_docs(self):
        plan = self.plan.model_copy(update={"description": "ticket " * 8000})
        completion = FakeCompletion(text='{"parameters": {}}')

        await self._generator(FakeDiscovery(), completion=completion).generate(plan, self.analysis, self.descriptor)

        self.assertNotIn("(n8n-nodes-base.openAi)", completion.prompts[0])
        self.assertIn("## Proven patterns", completion.prompts[0])


if __name__ == "__main__":
    unittest.main()
