import sys
import unittest
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1] / "src"))

from autoflow.errors import AssemblyError, DiscoveryError
from autoflow.workflow.blueprints import BlueprintAssembler, plan_stages
from autoflow.workflow.registry import DEFAULT_REGISTRY, NodeTemplateRegistry, enrich_template
from autoflow.workflow.schema import OrchestrationPlan
from autoflow.workflow.validator import validate_workflow


def _plan(steps, connections=None, triggers=None, **extra) -> OrchestrationPlan:
    return OrchestrationPlan.model_validate(
        {
            "workflowName": extra.pop("name", "Test Workflow"),
            "description": extra.pop("description", "test plan"),
            "triggers": [{"type": "webhook"}] if triggers is None else triggers,
            "steps": steps,
            "connections": connections or [],
            **extra,
        }
    )


class NodeTemplateRegistryTests(unittest.TestCase):
    def test_resolve_distinguishes_trigger_and_step_aliases(self):
        self.assertEqual(DEFAULT_REGISTRY.resolve("email", trigger=True).kind, "gmail-trigger")
        self.assertEqual(DEFAULT_REGISTRY.resolve("email", trigger=False).kind, "email-send")
        self.assertEqual(DEFAULT_REGISTRY.resolve("Notification", trigger=False).kind, "slack-message")
        self.assertIsNone(DEFAULT_REGISTRY.resolve("quantum-teleport"))

    def test_risky_terminal_flag_covers_outbound_sends(self):
        risky = DEFAULT_REGISTRY.risky_terminal_types()
        self.assertIn("n8n-nodes-base.httpRequest", risky)
        self.assertIn("n8n-nodes-base.emailSend", risky)
        self.assertIn("n8n-nodes-base.slack", risky)
        self.assertNotIn("n8n-nodes-base.set", risky)
        self.assertNotIn("n8n-nodes-base.merge", risky)

    def test_credentials_are_placeholders(self):
        block = DEFAULT_REGISTRY.get("gmail-send").credential_block()
        self.assertEqual(block["gmailOAuth2Api"]["id"], "{{GMAIL_OAUTH2_API_CREDENTIALS}}")

    def test_search_by_keywords(self):
        kinds = [t.kind for t in DEFAULT_REGISTRY.search("post a slack message", top_k=5)]
        self.assertIn("slack-message", kinds)

    def test_enrich_template_overlays_essentials(self):
        base = DEFAULT_REGISTRY.get("http")
        enriched = enrich_template(
            base,
            {"required": ["authentication"], "defaults": {"authentication": "none"}, "typeVersion": 5},
        )
        self.assertEqual(enriched.type_version, 5)
        self.assertEqual(enriched.required_params, ("url", "method", "authentication"))
        self.assertEqual(enriched.default_params["authentication"], "none")
        self.assertEqual(base.type_version, 4)

    def test_enrich_template_rejects_malformed_essentials(self):
        base = DEFAULT_REGISTRY.get("openai")
        for essentials in ({"typeVersion": None}, {"typeVersion": "v2"}, {"documentation": 42}):
            with self.subTest(essentials=essentials):
                with self.assertRaises(DiscoveryError):
                    enrich_template(base, essentials)


class BlueprintAssemblerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.assembler = BlueprintAssembler()

    def test_webhook_and_terminal_http_step_yield_two_nodes(self):
        plan = _plan(
            [{"id": "call", "name": "Call API", "type": "http", "terminal": True}],
            connections=[{"from": "trigger-1", "to": "call"}],
        )
        graph = self.assembler.assemble(plan)

        self.assertEqual(len(graph.nodes), 2)
        edges = [(src, conn.node) for src in graph.connections for conn in graph.outgoing(src)]
        self.assertEqual(edges, [("Webhook Trigger", "Call API")])
        self.assertIs(graph.node_by_name("Call API").parameters["terminal"], True)
        self.assertTrue(validate_workflow(graph).valid)

    def test_unmarked_http_tail_gets_completion_node(self):
        plan = _plan([{"id": "call", "name": "Call API", "type": "http"}])
        graph = self.assembler.assemble(plan)

        self.assertEqual([n.name for n in graph.nodes], ["Webhook Trigger", "Call API", "Record Result"])
        self.assertEqual([c.node for c in graph.outgoing("Call API")], ["Record Result"])
        self.assertNotIn("terminal", graph.node_by_name("Call API").parameters)
        self.assertTrue(validate_workflow(graph).valid)

    def test_parallel_branches_fan_into_merge(self):
        plan = _plan(
            [
                {"id": "prep", "name": "Prepare", "type": "function"},
                {"id": "notify", "name": "Notify Team", "type": "slack"},
                {"id": "log", "name": "Log Row", "type": "sheets"},
                {"id": "done", "name": "Mark Done", "type": "set"},
            ],
            connections=[
                {"from": "prep", "to": "notify"},
                {"from": "prep", "to": "log"},
                {"from": "notify", "to": "done"},
                {"from": "log", "to": "done"},
            ],
        )
        graph = self.assembler.assemble(plan)

        self.assertEqual(graph.meta["pattern"], "parallel-with-merge")
        self.assertEqual(
            sorted(c.node for c in graph.outgoing("Prepare")), ["Log Row", "Notify Team"]
        )
        merge_inputs = {
            source: conn.index
            for source in ("Notify Team", "Log Row")
            for conn in graph.outgoing(source)
            if conn.node == "Merge Branches"
        }
        self.assertEqual(merge_inputs, {"Notify Team": 0, "Log Row": 1})
        self.assertEqual([c.node for c in graph.outgoing("Merge Branches")], ["Mark Done"])
        self.assertEqual(graph.node_by_name("Merge Branches").parameters["mode"], "waitForAll")
        self.assertTrue(validate_workflow(graph).valid)

    def test_plan_stages_layers_by_longest_path(self):
        plan = _plan(
            [
                {"id": "a", "name": "A", "type": "set"},
                {"id": "b", "name": "B", "type": "set"},
                {"id": "c", "name": "C", "type": "set"},
                {"id": "d", "name": "D", "type": "set"},
            ],
            connections=[{"from": "a", "to": "b"}, {"from": "b", "to": "c"}, {"from": "a", "to": "c"}],
        )
        stages = plan_stages(plan)
        self.assertEqual([[s.id for s in stage.steps] for stage in stages], [["a"], ["b"], ["c"], ["d"]])

    def test_unknown_kind_falls_back_to_http_template(self):
        plan = _plan([{"id": "x", "name": "Teleport", "type": "quantum-teleport"}])
        graph = self.assembler.assemble(plan)
        node = graph.node_by_name("Teleport")
        self.assertEqual(node.type, "n8n-nodes-base.httpRequest")
        self.assertEqual(node.parameters["options"], {"retryOnFail": True, "maxRetries": 3})
        self.assertTrue(validate_workflow(graph).valid)

    def test_missing_generic_fallback_is_a_construction_error(self):
        registry = NodeTemplateRegistry(t for t in DEFAULT_REGISTRY if t.kind != "http")
        plan = _plan([{"id": "x", "name": "Teleport", "type": "quantum-teleport"}])
        with self.assertRaises(AssemblyError) as ctx:
            BlueprintAssembler(registry).assemble(plan)
        self.assertIn("quantum-teleport", str(ctx.exception))

    def test_plan_without_steps_is_rejected(self):
        with self.assertRaises(AssemblyError):
            self.assembler.assemble(_plan([]))

    def test_plan_with_cycle_is_rejected(self):
        plan = _plan(
            [{"id": "a", "name": "A", "type": "set"}, {"id": "b", "name": "B", "type": "set"}],
            connections=[{"from": "a", "to": "b"}, {"from": "b", "to": "a"}],
        )
        with self.assertRaises(AssemblyError) as ctx:
            self.assembler.assemble(plan)
        self.assertIn("cycle", str(ctx.exception))

    def test_inline_credentials_are_rejected(self):
        plan = _plan(
            [{"id": "call", "name": "Call", "type": "http", "configuration": {"api_key": "sk-abcdefghijklmnop"}}]
        )
        with self.assertRaises(AssemblyError) as ctx:
            self.assembler.assemble(plan)
        self.assertIn("configuration.api_key", str(ctx.exception))

    def test_scalar_http_options_are_a_construction_error(self):
        plan = _plan(
            [{"id": "call", "name": "Call", "type": "http", "terminal": True, "configuration": {"options": "default"}}]
        )
        with self.assertRaises(AssemblyError) as ctx:
            self.assembler.assemble(plan)
        self.assertIn("options must be an object", str(ctx.exception))

    def test_missing_trigger_is_synthesized(self):
        plan = _plan([{"id": "a", "name": "A", "type": "set"}], triggers=[])
        graph = self.assembler.assemble(plan)
        self.assertEqual(graph.nodes[0].type, "n8n-nodes-base.webhook")
        self.assertEqual([c.node for c in graph.outgoing(graph.nodes[0].name)], ["A"])

    def test_duplicate_display_names_are_made_unique(self):
        plan = _plan(
            [
                {"id": "a", "name": "Notify", "type": "set"},
                {"id": "b", "name": "Notify", "type": "set"},
            ]
        )
        graph = self.assembler.assemble(plan)
        self.assertEqual([n.name for n in graph.nodes[1:]], ["Notify", "Notify 2"])
        self.assertEqual(len({n.id for n in graph.nodes}), len(graph.nodes))

    def test_blank_required_override_keeps_default(self):
        plan = _plan(
            [{"id": "call", "name": "Call", "type": "http", "configuration": {"url": "", "options": {"timeout": 5}}}]
        )
        node = self.assembler.assemble(plan).node_by_name("Call")
        self.assertEqual(node.parameters["url"], "{{API_URL}}")
        self.assertEqual(node.parameters["options"], {"retryOnFail": True, "maxRetries": 3, "timeout": 5})

    def test_assembled_graphs_always_validate(self):
        plans = [
            _plan([{"id": "s", "name": "Send", "type": "email"}], triggers=[{"type": "schedule"}]),
            _plan(
                [
                    {"id": "ai", "name": "Classify", "type": "openai"},
                    {"id": "route", "name": "Route", "type": "switch"},
                    {"id": "reply", "name": "Reply", "type": "gmail"},
                ],
                triggers=[{"type": "email"}],
            ),
            _plan(
                [
                    {"id": "a", "name": "Fetch", "type": "api"},
                    {"id": "b", "name": "Store", "type": "airtable"},
                    {"id": "c", "name": "Alert", "type": "notify"},
                ],
                connections=[{"from": "a", "to": "b"}, {"from": "a", "to": "c"}],
                triggers=[{"type": "form"}, {"type": "cron"}],
            ),
            _plan([{"id": "x", "name": "Unknown", "type": "mystery", "configuration": {"url": "https://x.test"}}]),
        ]
        for plan in plans:
            with self.subTest(plan=plan.steps[0].name):
                result = validate_workflow(self.assembler.assemble(plan))
                self.assertTrue(result.valid, result.errors)


if __name__ == "__main__":
    unittest.main()
