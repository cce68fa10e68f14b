import asyncio
import json
import shutil
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from autoflow.agents.base import Completion
from autoflow.errors import JobNotFoundError, JobStateError
from autoflow.jobs.schema import JobStatus, JobSubmission
from autoflow.jobs.store import JobStore
from autoflow.monitoring.cost import CostMonitor
from autoflow.planning import Planner, deterministic_plan, infer_step_kind
from autoflow.workflow.generator import Fallback, HybridGenerator
from autoflow.workflow.pipeline import JobProcessor
from autoflow.workflow.schema import AutomationOpportunity, Node, WorkflowGraph
from autoflow.workflow.store import ArtifactStore

SUPPORT_SUBMISSION = {
    "processDescription": "Classify incoming support emails and alert the on-call team",
    "businessContext": {"industry": "Finance", "department": "Support"},
    "plan": {
        "workflowName": "Support Triage",
        "triggers": [{"type": "email"}],
        "steps": [
            {"id": "classify", "name": "Classify", "type": "openai"},
            {"id": "route", "name": "Route", "type": "switch"},
            {"id": "alert", "name": "Alert Team", "type": "slack"},
        ],
    },
}


class RecordingJobStore(JobStore):
    def __init__(self):
        super().__init__()
        self.history: list[tuple[str, int]] = []

    def transition(self, job_id, status, progress=None, **changes):
        job = super().transition(job_id, status, progress, **changes)
        self.history.append((job.status.value, job.progress))
        return job


class HangingDiscovery:
    def __init__(self):
        self.closed = False

    async def connect(self):
        await asyncio.sleep(5)

    async def aclose(self):
        self.closed = True


class MalformedEssentialsDiscovery:
    """Reachable, but reports a non-numeric typeVersion for every node."""

    def __init__(self):
        self.closed = False

    async def connect(self):
        return None

    async def get_node_essentials(self, node_type):
        return {"required": [], "typeVersion": None}

    async def aclose(self):
        self.closed = True


class ScriptedCompletion:
    def __init__(self, text: str):
        self.text = text
        self.calls = 0
        self.prompts: list[str] = []
        self.system_prompts: list[str] = []

    async def complete(self, prompt, system_prompt, model):
        self.calls += 1
        self.prompts.append(prompt)
        self.system_prompts.append(system_prompt)
        return Completion(text=self.text, model=model, input_tokens=2000, output_tokens=800)


class StubGenerator:
    def __init__(self, graph: WorkflowGraph):
        self.graph = graph

    async def generate(self, plan, analysis, descriptor, *, job_id=None, context=None):
        return Fallback(graph=self.graph, reason="stubbed")


class JobProcessorTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.tmp_dir = Path(tempfile.mkdtemp(prefix="autoflow-jobs-"))
        self.jobs = RecordingJobStore()
        self.discovery = HangingDiscovery()

    def tearDown(self) -> None:
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def _processor(self, generator=None, planner=None) -> JobProcessor:
        generator = generator or HybridGenerator(discovery_factory=lambda: self.discovery, connect_timeout=0.05)
        planner = planner or Planner(None, "claude-3-5-sonnet")
        return JobProcessor(self.jobs, planner, generator, ArtifactStore(self.tmp_dir))

    async def test_unreachable_discovery_still_completes_with_fallback(self):
        processor = self._processor()
        job = processor.submit(JobSubmission.model_validate(SUPPORT_SUBMISSION))

        done = await processor.process(job.id)

        self.assertEqual(done.status, JobStatus.COMPLETED)
        self.assertEqual(done.progress, 100)
        self.assertEqual(
            self.jobs.history,
            [("planning", 10), ("generating", 40), ("validating", 70), ("completed", 100)],
        )
        self.assertEqual(done.result.metadata.strategy_used, "fallback")
        self.assertIn("unreachable", done.result.metadata.fallback_reason)
        self.assertTrue(done.result.metadata.validation_passed)
        self.assertEqual(done.result.metadata.complexity_tier, "complex")
        self.assertTrue(self.discovery.closed)
        self.assertIsNotNone(done.plan)

        path = self.tmp_dir / f"{job.id}.json"
        self.assertTrue(path.exists())
        saved = json.loads(path.read_text())
        self.assertEqual(saved["metadata"]["strategyUsed"], "fallback")
        self.assertIn("## Configuration", saved["instructions"])

    async def test_malformed_essentials_complete_with_fallback(self):
        discovery = MalformedEssentialsDiscovery()
        generator = HybridGenerator(discovery_factory=lambda: discovery, connect_timeout=0.05)
        processor = self._processor(generator=generator)
        job = processor.submit(JobSubmission.model_validate(SUPPORT_SUBMISSION))

        done = await processor.process(job.id)

        self.assertEqual(done.status, JobStatus.COMPLETED)
        self.assertEqual(done.result.metadata.strategy_used, "fallback")
        self.assertIn("typeVersion", done.result.metadata.fallback_reason)
        self.assertTrue(discovery.closed)

    async def test_opportunities_only_submission_gets_deterministic_plan(self):
        processor = self._processor()
        submission = JobSubmission.model_validate(
            {
                "automationOpportunities": [
                    {"name": "Log Orders", "description": "Append orders to a spreadsheet"},
                    {"name": "Notify Sales", "automationSolution": "slack_alert"},
                ]
            }
        )
        job = processor.submit(submission)

        done = await processor.process(job.id)

        self.assertEqual(done.status, JobStatus.COMPLETED)
        self.assertEqual([s.type for s in done.plan.steps], ["google-sheets", "slack-message"])
        names = [n.name for n in done.result.workflow.nodes]
        self.assertIn("Record Result", names)

    async def test_inline_secret_fails_job_at_generation(self):
        submission = json.loads(json.dumps(SUPPORT_SUBMISSION))
        submission["plan"]["steps"][0]["configuration"] = {"api_key": "sk-live-1234567890abcdef"}
        processor = self._processor()
        job = processor.submit(JobSubmission.model_validate(submission))

        done = await processor.process(job.id)

        self.assertEqual(done.status, JobStatus.FAILED)
        self.assertEqual(done.progress, 40)
        self.assertIn("api_key", done.error)
        self.assertIsNone(done.result)
        self.assertFalse((self.tmp_dir / f"{job.id}.json").exists())

    async def test_invalid_graph_fails_job_at_validation(self):
        graph = WorkflowGraph(
            name="Broken",
            nodes=[
                Node(id="a", name="Webhook", type="n8n-nodes-base.webhook",
                     parameters={"path": "in", "httpMethod": "POST"}),
                Node(id="b", name="Call", type="n8n-nodes-base.httpRequest",
                     parameters={"url": "https://api.example.test", "method": "POST"}),
            ],
        )
        graph.connect("Webhook", "Call")
        processor = self._processor(generator=StubGenerator(graph))
        job = processor.submit(JobSubmission.model_validate(SUPPORT_SUBMISSION))

        done = await processor.process(job.id)

        self.assertEqual(done.status, JobStatus.FAILED)
        self.assertEqual(done.progress, 70)
        self.assertTrue(done.error.startswith("workflow validation failed"))
        self.assertTrue(any("'Call'" in e for e in done.errors))

    async def test_terminal_job_is_not_reprocessed(self):
        processor = self._processor()
        job = processor.submit(JobSubmission.model_validate(SUPPORT_SUBMISSION))
        await processor.process(job.id)
        transitions = len(self.jobs.history)

        again = await processor.process(job.id)

        self.assertEqual(again.status, JobStatus.COMPLETED)
        self.assertEqual(len(self.jobs.history), transitions)


class JobStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = JobStore()
        self.job = self.store.create(JobSubmission(id="job-1"))

    def test_create_is_idempotent_for_same_id(self):
        self.store.transition("job-1", JobStatus.PLANNING, 10)
        again = self.store.create(JobSubmission(id="job-1"))
        self.assertEqual(again.status, JobStatus.PLANNING)
        self.assertEqual(len(self.store.list_jobs()), 1)

    def test_transitions_only_move_forward(self):
        self.store.transition("job-1", JobStatus.GENERATING, 40)
        with self.assertRaises(JobStateError):
            self.store.transition("job-1", JobStatus.PLANNING, 10)

    def test_progress_never_decreases(self):
        self.store.transition("job-1", JobStatus.GENERATING, 40)
        job = self.store.transition("job-1", JobStatus.GENERATING, 20)
        self.assertEqual(job.progress, 40)

    def test_terminal_state_is_final(self):
        self.store.transition("job-1", JobStatus.FAILED, error="boom")
        with self.assertRaises(JobStateError):
            self.store.transition("job-1", JobStatus.COMPLETED, 100)

    def test_repeated_transition_is_a_no_op(self):
        first = self.store.transition("job-1", JobStatus.PLANNING, 10)
        second = self.store.transition("job-1", JobStatus.PLANNING, 10)
        self.assertEqual(first.updated_at, second.updated_at)

    def test_unknown_job(self):
        with self.assertRaises(JobNotFoundError) as ctx:
            self.store.get("missing")
        self.assertEqual(str(ctx.exception), "Job 'missing' not found")

    def test_returned_jobs_are_copies(self):
        job = self.store.get("job-1")
        job.progress = 99
        self.assertEqual(self.store.get("job-1").progress, 0)


class PlannerTests(unittest.IsolatedAsyncioTestCase):
    async def test_ai_plan_is_used_and_costed(self):
        plan = {
            "workflowName": "Lead Intake",
            "triggers": [{"type": "form"}],
            "steps": [{"id": "save", "name": "Save Lead", "type": "airtable"}],
        }
        completion = ScriptedCompletion(json.dumps(plan))
        monitor = CostMonitor()
        planner = Planner(completion, "claude-3-5-sonnet", cost_monitor=monitor)

        result = await planner.plan(JobSubmission(id="job-7", processDescription="Capture leads"))

        self.assertEqual(result.source, "ai")
        self.assertEqual(result.plan.workflow_name, "Lead Intake")
        self.assertEqual(monitor.records()[0].job_id, "job-7")

    async def test_unusable_ai_plan_degrades_to_deterministic(self):
        completion = ScriptedCompletion('{"workflowName": "Empty", "steps": []}')
        planner = Planner(completion, "claude-3-5-sonnet")
        submission = JobSubmission(automationOpportunities=[AutomationOpportunity(name="Escalate")])

        result = await planner.plan(submission)

        self.assertEqual(result.source, "deterministic")
        self.assertIn("no steps", result.reason)
        self.assertEqual(result.plan.steps[0].id, "escalate")

    async def test_ai_plan_with_duplicate_step_ids_degrades(self):
        plan = {
            "workflowName": "Twice",
            "steps": [
                {"id": "notify", "name": "Notify A", "type": "slack"},
                {"id": "notify", "name": "Notify B", "type": "slack"},
            ],
        }
        planner = Planner(ScriptedCompletion(json.dumps(plan)), "claude-3-5-sonnet")
        submission = JobSubmission(automationOpportunities=[AutomationOpportunity(name="Notify team")])

        result = await planner.plan(submission)

        self.assertEqual(result.source, "deterministic")
        self.assertIn("unique ids", result.reason)

    async def test_ai_plan_with_literal_secret_degrades(self):
        plan = {
            "workflowName": "Leaky",
            "steps": [
                {"id": "call", "name": "Call", "type": "http", "configuration": {"api_key": "sk-abcdefghijklmnop"}}
            ],
        }
        planner = Planner(ScriptedCompletion(json.dumps(plan)), "claude-3-5-sonnet")

        result = await planner.plan(JobSubmission(processDescription="Call the partner API"))

        self.assertEqual(result.source, "deterministic")
        self.assertIn("literal credentials", result.reason)

    async def test_planner_prompt_carries_business_focus(self):
        plan = {"workflowName": "Lead Intake", "steps": [{"id": "save", "name": "Save Lead", "type": "airtable"}]}
        completion = ScriptedCompletion(json.dumps(plan))
        submission = JobSubmission.model_validate(
            {"processDescription": "Capture leads", "businessContext": {"industry": "Retail", "department": "Sales"}}
        )

        await Planner(completion, "claude-3-5-sonnet").plan(submission)

        self.assertIn("Business context: Retail | Sales", completion.system_prompts[0])
        self.assertIn("## Workflow focus", completion.system_prompts[0])
        self.assertIn("### http (n8n-nodes-base.httpRequest)", completion.prompts[0])

    async def test_submitted_plan_skips_the_model(self):
        completion = ScriptedCompletion("{}")
        planner = Planner(completion, "claude-3-5-sonnet")
        result = await planner.plan(JobSubmission.model_validate(SUPPORT_SUBMISSION))
        self.assertEqual(result.source, "submitted")
        self.assertEqual(completion.calls, 0)

    def test_deterministic_plan_shape(self):
        plan = deterministic_plan([], "Ping the partner API")
        self.assertEqual([t.type for t in plan.triggers], ["webhook"])
        self.assertEqual([s.id for s in plan.steps], ["process-request"])
        self.assertEqual([(e.source, e.target) for e in plan.connections], [("trigger-1", "process-request")])

    def test_step_kind_inference(self):
        self.assertEqual(infer_step_kind(AutomationOpportunity(automation_solution="ai_classification")), "openai")
        self.assertEqual(infer_step_kind(AutomationOpportunity(name="Approval gate")), "if")
        self.assertEqual(infer_step_kind(AutomationOpportunity(name="Sync ERP")), "http")


if __name__ == "__main__":
    unittest.main()
