"""Node template registry: the static catalog of workflow node kinds."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from ..errors import DiscoveryError

GENERIC_FALLBACK_KIND = "http"
DEFAULT_TRIGGER_KIND = "webhook"
MERGE_KIND = "merge"
COMPLETION_KIND = "set"


@dataclass(frozen=True)
class NodeTemplate:
    kind: str
    node_type: str
    description: str
    type_version: int = 1
    required_params: tuple[str, ...] = ()
    default_params: dict[str, Any] = field(default_factory=dict)
    credentials: tuple[str, ...] = ()
    is_trigger: bool = False
    # Outbound side effects that must not dangle at the end of a graph
    is_risky_terminal: bool = False
    service: str | None = None
    aliases: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()
    docs: str = ""

    def credential_block(self) -> dict[str, dict[str, str]]:
        """Placeholder credential references; real secrets are bound in the engine."""
        return {
            cred: {
                "id": f"{{{{{_placeholder(cred)}}}}}",
                "name": cred.removesuffix("Api").removesuffix("OAuth2") + " account",
            }
            for cred in self.credentials
        }


def _placeholder(credential: str) -> str:
    snake = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", credential).upper()
    return f"{snake}_CREDENTIALS"


NODE_TEMPLATES: list[NodeTemplate] = [
    # --- Triggers ---
    NodeTemplate(
        kind="webhook",
        node_type="n8n-nodes-base.webhook",
        description="Start the workflow when an HTTP request hits a webhook URL",
        required_params=("path", "httpMethod"),
        default_params={
            "path": "automation/{{JOB_ID}}",
            "httpMethod": "POST",
            "responseMode": "onReceived",
            "responseCode": 200,
        },
        is_trigger=True,
        aliases=("webhook-trigger", "http-trigger", "api-trigger"),
        keywords=("webhook", "http", "request", "inbound", "api", "trigger"),
        docs=(
            "Webhook trigger. Exposes a URL; each request starts one execution. "
            "Parameters: path (URL suffix), httpMethod (GET/POST), responseMode "
            "(onReceived answers immediately, lastNode waits for the final node)."
        ),
    ),
    NodeTemplate(
        kind="schedule",
        node_type="n8n-nodes-base.scheduleTrigger",
        description="Start the workflow on a recurring schedule",
        required_params=("rule",),
        default_params={
            "rule": {"interval": [{"field": "cronExpression", "expression": "0 * * * *"}]},
        },
        is_trigger=True,
        aliases=("cron", "timer", "scheduled", "interval"),
        keywords=("schedule", "cron", "daily", "hourly", "recurring", "timer"),
        docs=(
            "Schedule trigger. Fires on an interval or cron expression. "
            "Parameters: rule.interval[] with field=cronExpression and expression."
        ),
    ),
    NodeTemplate(
        kind="gmail-trigger",
        node_type="n8n-nodes-base.gmailTrigger",
        description="Start the workflow when a new email arrives in Gmail",
        required_params=("pollTimes",),
        default_params={
            "pollTimes": {"item": [{"mode": "everyMinute"}]},
            "simple": True,
            "filters": {},
        },
        credentials=("gmailOAuth2Api",),
        is_trigger=True,
        service="gmail",
        aliases=("email", "email-trigger", "inbox", "mail"),
        keywords=("email", "gmail", "inbox", "incoming", "mail", "message"),
        docs=(
            "Gmail trigger. Polls a mailbox and emits one item per new message. "
            "Parameters: pollTimes.item[].mode, filters (labelIds, q search string)."
        ),
    ),
    NodeTemplate(
        kind="form-trigger",
        node_type="n8n-nodes-base.formTrigger",
        description="Start the workflow when a hosted form is submitted",
        required_params=("formTitle",),
        default_params={"formTitle": "Request Form", "formFields": {"values": []}},
        is_trigger=True,
        aliases=("form", "form-submission", "survey"),
        keywords=("form", "submission", "survey", "intake", "request"),
        docs=(
            "Form trigger. Hosts a form and starts an execution per submission. "
            "Parameters: formTitle, formFields.values[] (fieldLabel, fieldType, requiredField)."
        ),
    ),
    # --- Outbound actions ---
    NodeTemplate(
        kind="http",
        node_type="n8n-nodes-base.httpRequest",
        type_version=4,
        description="Call an external HTTP API",
        required_params=("url", "method"),
        default_params={
            "url": "{{API_URL}}",
            "method": "POST",
            "sendBody": True,
            "options": {"retryOnFail": True, "maxRetries": 3},
        },
        is_risky_terminal=True,
        aliases=("http-request", "httprequest", "api", "api-call", "rest", "request"),
        keywords=("http", "api", "rest", "request", "call", "endpoint", "integration"),
        docs=(
            "HTTP Request. Calls any REST endpoint. Parameters: url, method, "
            "sendBody, jsonBody, options.retryOnFail and options.maxRetries "
            "(retries are required on outbound calls)."
        ),
    ),
    NodeTemplate(
        kind="email-send",
        node_type="n8n-nodes-base.emailSend",
        description="Send an email over SMTP",
        required_params=("toEmail", "subject", "text"),
        default_params={
            "fromEmail": "{{from}}",
            "toEmail": "{{recipient}}",
            "subject": "Automated update",
            "text": "{{message}}",
        },
        credentials=("smtp",),
        is_risky_terminal=True,
        aliases=("email", "send-email", "smtp", "mail", "email-notification"),
        keywords=("email", "send", "smtp", "notify", "mail", "reply"),
        docs=(
            "Send Email (SMTP). Parameters: fromEmail, toEmail, subject, text. "
            "Set parameters.terminal=true when the email deliberately ends the flow."
        ),
    ),
    NodeTemplate(
        kind="gmail-send",
        node_type="n8n-nodes-base.gmail",
        type_version=2,
        description="Send or reply to email through Gmail",
        required_params=("resource", "operation"),
        default_params={"resource": "message", "operation": "send"},
        credentials=("gmailOAuth2Api",),
        is_risky_terminal=True,
        service="gmail",
        aliases=("gmail", "gmail-reply"),
        keywords=("gmail", "email", "send", "reply", "google"),
        docs=(
            "Gmail. resource=message, operation=send|reply. Parameters: sendTo, "
            "subject, message. Requires a Gmail OAuth2 credential."
        ),
    ),
    NodeTemplate(
        kind="slack-message",
        node_type="n8n-nodes-base.slack",
        type_version=2,
        description="Post a message to a Slack channel",
        required_params=("channel", "text"),
        default_params={"channel": "#general", "text": "{{message}}"},
        credentials=("slackApi",),
        is_risky_terminal=True,
        service="slack",
        aliases=("slack", "notification", "notify", "chat-message", "alert"),
        keywords=("slack", "notify", "notification", "alert", "channel", "message"),
        docs=(
            "Slack. Posts to a channel. Parameters: channel, text, "
            "otherOptions.mrkdwn. Requires a Slack API credential."
        ),
    ),
    # --- Data stores ---
    NodeTemplate(
        kind="google-sheets",
        node_type="n8n-nodes-base.googleSheets",
        type_version=4,
        description="Append or update rows in a Google Sheet",
        required_params=("operation", "documentId"),
        default_params={
            "operation": "append",
            "documentId": "{{SHEETS_ID}}",
            "options": {"valueInputMode": "RAW"},
        },
        credentials=("googleSheetsOAuth2Api",),
        service="googleSheets",
        aliases=("sheets", "spreadsheet", "googlesheets", "google-sheet"),
        keywords=("sheets", "spreadsheet", "row", "append", "google", "log"),
        docs=(
            "Google Sheets. operation=append|update|read. Parameters: documentId, "
            "sheetName, columns mapping, options.valueInputMode."
        ),
    ),
    NodeTemplate(
        kind="airtable",
        node_type="n8n-nodes-base.airtable",
        description="Create or upsert Airtable records",
        required_params=("operation", "table"),
        default_params={
            "operation": "create",
            "application": "{{AIRTABLE_BASE}}",
            "table": "{{AIRTABLE_TABLE}}",
            "options": {"typecast": True},
        },
        credentials=("airtableApi",),
        service="airtable",
        aliases=("airtable-upsert", "database", "crm", "record"),
        keywords=("airtable", "record", "base", "table", "upsert", "crm"),
        docs=(
            "Airtable. operation=create|upsert|update. Parameters: application "
            "(base id), table, upsertKeys[], options.typecast."
        ),
    ),
    # --- Processing ---
    NodeTemplate(
        kind="openai",
        node_type="n8n-nodes-base.openAi",
        description="Classify, summarize or draft text with an LLM",
        required_params=("model",),
        default_params={"model": "gpt-4", "temperature": 0.7, "maxTokens": 1000},
        credentials=("openAiApi",),
        service="openai",
        aliases=("ai", "llm", "classification", "classify", "ai-analysis", "summarize", "gpt"),
        keywords=("ai", "classify", "summarize", "analysis", "llm", "draft", "intelligent"),
        docs=(
            "OpenAI. Chat completion over item fields. Parameters: model, prompt, "
            "temperature, maxTokens. Output text is available as $json.text."
        ),
    ),
    NodeTemplate(
        kind="function",
        node_type="n8n-nodes-base.function",
        description="Run custom JavaScript over the incoming items",
        required_params=("functionCode",),
        default_params={"functionCode": "// Process the input data\nreturn items;"},
        aliases=("code", "script", "custom", "javascript"),
        keywords=("code", "function", "script", "custom", "process", "parse"),
        docs=(
            "Function. Runs JavaScript against all items. Parameter: functionCode, "
            "which must return an array of items."
        ),
    ),
    NodeTemplate(
        kind="set",
        node_type="n8n-nodes-base.set",
        description="Set, rename or keep fields on each item",
        required_params=("values",),
        default_params={
            "keepOnlySet": False,
            "values": {"string": [{"name": "status", "value": "processed"}]},
        },
        aliases=("transform", "data-transform", "map", "format", "record-result"),
        keywords=("transform", "set", "field", "map", "format", "shape"),
        docs=(
            "Set. Writes fixed or expression values onto items. Parameters: "
            "keepOnlySet, values.string[]/number[]/boolean[] with name and value."
        ),
    ),
    NodeTemplate(
        kind="if",
        node_type="n8n-nodes-base.if",
        description="Route items down a true or false branch",
        required_params=("conditions",),
        default_params={
            "conditions": {"string": [{"value1": "={{$json.status}}", "value2": "approved"}]},
        },
        aliases=("condition", "conditional", "branch", "decision", "approval"),
        keywords=("if", "condition", "branch", "approve", "check", "decision"),
        docs=(
            "IF. Splits items by a condition into output 0 (true) and 1 (false). "
            "Parameters: conditions.string[]/number[] with value1, operation, value2."
        ),
    ),
    NodeTemplate(
        kind="switch",
        node_type="n8n-nodes-base.switch",
        description="Route items by matching rules to numbered outputs",
        required_params=("rules",),
        default_params={"dataType": "string", "value1": "={{$json.category}}", "rules": {"rules": []}},
        aliases=("route", "router", "routing", "category-router"),
        keywords=("switch", "route", "category", "rules", "routing"),
        docs=(
            "Switch. Sends each item to the first output whose rule matches. "
            "Parameters: dataType, value1, rules.rules[] (operation, value2, output)."
        ),
    ),
    NodeTemplate(
        kind="merge",
        node_type="n8n-nodes-base.merge",
        type_version=2,
        description="Wait for parallel branches and combine their items",
        required_params=("mode",),
        default_params={"mode": "waitForAll", "options": {}},
        aliases=("join", "combine", "wait-for-all"),
        keywords=("merge", "join", "combine", "parallel", "wait"),
        docs=(
            "Merge. Waits for every connected input before emitting. "
            "Parameter: mode (waitForAll, append, mergeByKey)."
        ),
    ),
]


def _tokenize(text: str) -> set[str]:
    return set(re.findall(r"[a-z0-9]+", text.lower()))


def _normalize(kind: str) -> str:
    return re.sub(r"[\s_]+", "-", kind.strip().lower())


class NodeTemplateRegistry:
    """Lookup and search over a set of node templates."""

    def __init__(self, templates: Iterable[NodeTemplate]):
        self._templates: dict[str, NodeTemplate] = {}
        self._aliases: dict[str, str] = {}
        for template in templates:
            self.register(template)

    def register(self, template: NodeTemplate) -> None:
        self._templates[template.kind] = template
        for alias in (template.kind, *template.aliases):
            self._aliases.setdefault(_normalize(alias), template.kind)

    def __iter__(self):
        return iter(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def get(self, kind: str) -> NodeTemplate | None:
        return self._templates.get(kind)

    def resolve(self, kind: str, *, trigger: bool | None = None) -> NodeTemplate | None:
        """Map a plan kind (or alias) onto a template.

        ``trigger`` restricts the match to trigger or non-trigger templates, so
        "email" resolves to the Gmail trigger for triggers and to Send Email for steps.
        """
        key = _normalize(kind)
        candidates = [self._templates.get(key), self._templates.get(self._aliases.get(key, ""))]
        candidates += [t for t in self._templates.values() if key in map(_normalize, t.aliases)]
        for template in candidates:
            if template is None:
                continue
            if trigger is None or template.is_trigger == trigger:
                return template
        return None

    def by_node_type(self, node_type: str) -> NodeTemplate | None:
        return next((t for t in self._templates.values() if t.node_type == node_type), None)

    def generic_fallback(self) -> NodeTemplate | None:
        return self._templates.get(GENERIC_FALLBACK_KIND)

    def risky_terminal_types(self) -> set[str]:
        return {t.node_type for t in self._templates.values() if t.is_risky_terminal}

    def search(self, query: str, top_k: int = 5) -> list[NodeTemplate]:
        """Search templates by keyword overlap with query tokens."""
        query_tokens = _tokenize(query)
        templates = list(self._templates.values())
        if not query_tokens:
            return templates[:top_k]

        scored: list[tuple[int, int, NodeTemplate]] = []
        for idx, template in enumerate(templates):
            template_tokens = (
                _tokenize(template.description)
                | _tokenize(" ".join(template.keywords))
                | _tokenize(template.kind)
            )
            overlap = len(query_tokens & template_tokens)
            if overlap > 0:
                scored.append((overlap, -idx, template))

        scored.sort(key=lambda x: (x[0], x[1]), reverse=True)
        return [template for _, _, template in scored[:top_k]]


def enrich_template(template: NodeTemplate, essentials: dict[str, Any]) -> NodeTemplate:
    """Overlay live capability metadata from the discovery service on a template.

    Raises :class:`DiscoveryError` when the metadata does not have the expected shape.
    """
    extra_required = essentials.get("required", [])
    defaults = essentials.get("defaults", {})
    version = essentials.get("typeVersion", template.type_version)
    docs = essentials.get("documentation", template.docs)
    if not isinstance(extra_required, list) or not all(isinstance(r, str) for r in extra_required):
        raise DiscoveryError(f"essentials for {template.node_type} have a malformed 'required' list")
    if not isinstance(defaults, dict):
        raise DiscoveryError(f"essentials for {template.node_type} have malformed 'defaults'")
    if not isinstance(version, (int, float)) or isinstance(version, bool):
        raise DiscoveryError(f"essentials for {template.node_type} have a non-numeric 'typeVersion'")
    if docs is not None and not isinstance(docs, str):
        raise DiscoveryError(f"essentials for {template.node_type} have non-text 'documentation'")
    return replace(
        template,
        type_version=int(version),
        required_params=tuple(dict.fromkeys([*template.required_params, *extra_required])),
        default_params={**template.default_params, **defaults},
        docs=docs or template.docs,
    )


DEFAULT_REGISTRY = NodeTemplateRegistry(NODE_TEMPLATES)
