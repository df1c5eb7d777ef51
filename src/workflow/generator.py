"""Kestra-style YAML export of the response workflow for one incident.

The export is a human-facing artifact and is never parsed by the live
pipeline. Interpolated values follow one escaping contract:

* scalars (telemetry, location, model, description) are emitted as YAML
  double-quoted strings using JSON escapes for backslashes, quotes, newlines
  and control characters, plus ``\\uXXXX`` escapes for characters YAML does not
  accept raw;
* the protocol catalog is embedded in the retrieval script as a Python string
  literal holding its JSON serialization.

Loading the output with a YAML parser therefore returns the incident's text
unchanged, and ``json.loads`` of the embedded literal returns the catalog.
"""

import json
import re
from string import Template
from typing import NamedTuple, Optional

from src.config import LLMProvider, get_settings
from src.protocols.catalog import ProtocolCatalog, get_catalog
from src.rag.retriever import DEFAULT_CONFIDENCE, DEFAULT_PROTOCOL, RETRIEVAL_RULES
from src.schema import Incident
from src.stages import DECIDE, DEFAULT_BRANCH, DISPATCH, DISPATCH_BRANCHES, INGEST, RETRIEVE, SUMMARIZE

WORKFLOW_FILENAME = "resq-incident-workflow.yaml"
WORKFLOW_ID = "resq-automated-incident-response"
WORKFLOW_NAMESPACE = "com.resq.production"

# Raw characters a YAML double-quoted scalar would reject or fold
_YAML_UNSAFE = re.compile("[\x7f-\x9f\u2028\u2029\ud800-\udfff\ufffe\uffff]")


class ChatTaskStyle(NamedTuple):
    type: str
    secret: str
    output: str


CHAT_TASK_STYLES: dict[LLMProvider, ChatTaskStyle] = {
    LLMProvider.ANTHROPIC: ChatTaskStyle(
        type="io.kestra.plugin.anthropic.ChatCompletion",
        secret="ANTHROPIC_API_KEY",
        output="outputs['{task}'].output",
    ),
    LLMProvider.OPENAI: ChatTaskStyle(
        type="io.kestra.plugin.openai.ChatCompletion",
        secret="OPENAI_API_KEY",
        output="outputs['{task}'].choices[0].message.content",
    ),
}

DISPATCH_ACTIONS: dict[str, str] = {
    "alert_national_guard": """\
- id: alert_national_guard
  type: io.kestra.plugin.scripts.shell.Commands
  commands:
    - './deploy_assets.sh --level=CRITICAL --target="{{ vars.target_location }}"'""",
    "alert_emergency_services": """\
- id: alert_emergency_services
  type: io.kestra.plugin.notifications.slack.SlackIncomingWebhook
  url: "{{ secret('SLACK_WEBHOOK') }}"
  payload: |
    {"text": "DEPLOYING FOR {{ vars.target_location }}"}""",
    "log_monitor": """\
- id: log_monitor
  type: io.kestra.plugin.core.log.Log
  message: "Situation monitoring active for {{ vars.target_location }}\"""",
}

WORKFLOW_TEMPLATE = Template(
    """\
id: $workflow_id
namespace: $namespace
description: $description

# Webhook trigger: IoT grids and external monitors POST telemetry here.
triggers:
  - id: ingest_telemetry_webhook
    type: io.kestra.plugin.core.trigger.Webhook
    key: "resq-secure-auth-token"

# Manual runs and API calls; defaults are taken from the incident.
inputs:
  - id: raw_telemetry
    type: STRING
    defaults: $raw_telemetry
  - id: location
    type: STRING
    defaults: $location

# Prefer the webhook payload, fall back to the manual inputs.
variables:
  data_payload: "{{ trigger.body.raw_telemetry ?? inputs.raw_telemetry }}"
  target_location: "{{ trigger.body.location ?? inputs.location }}"

tasks:
  - id: $ingest_task
    type: io.kestra.plugin.core.log.Log
    message: "Ingesting raw telemetry for {{ render(vars.target_location) }}"

  - id: $summarize_task
    type: $chat_type
    apiKey: "{{ secret('$chat_secret') }}"
    model: $model
    prompt: |
      ANALYZE THIS RAW SENSOR DATA:
      {{ render(vars.data_payload) }}

      OUTPUT: A concise Situation Report (SITREP).

  - id: $retrieve_task
    type: io.kestra.plugin.scripts.python.Script
    containerImage: python:3.11-slim
    beforeCommands:
      - pip install kestra
    script: |
      import json
      import sys

      from kestra import Kestra

      protocols = json.loads($protocols_literal)

      sitrep = \"\"\"{{ $summary_output }}\"\"\".lower()
      print(f"RAG: Searching for protocols relevant to: {sitrep[:50]}...", file=sys.stderr)

$retrieval_logic

      print(f"RAG: Match found -> {key} ({score})", file=sys.stderr)
      Kestra.outputs({"protocol_name": key, "confidence": score, "protocol": protocols[key]})

  - id: $decide_task
    type: $chat_type
    apiKey: "{{ secret('$chat_secret') }}"
    model: $model
    prompt: |
      ACT AS INCIDENT COMMANDER.

      SITUATION: {{ $summary_output }}

      MANDATORY PROTOCOL:
      {{ outputs['$retrieve_task'].vars.protocol }}

      TASK:
      1. Declare Severity (LOW/MEDIUM/HIGH/CRITICAL).
      2. List Resources to dispatch.
      3. Quote the protocol in your rationale.

      RETURN JSON ONLY: {"severity": "...", "resources": [...], "rationale": "..."}

  - id: $dispatch_task
    type: io.kestra.plugin.core.flow.Switch
    value: "{{ fromJson($decision_output).severity }}"
    cases:
$dispatch_cases
    defaults:
$dispatch_default
"""
)


def yaml_quote(text: str) -> str:
    """Render text as a YAML double-quoted scalar."""
    quoted = json.dumps(text, ensure_ascii=False)
    return _YAML_UNSAFE.sub(lambda m: f"\\u{ord(m.group()):04x}", quoted)


def _indent(block: str, spaces: int) -> str:
    pad = " " * spaces
    return "\n".join(pad + line if line else line for line in block.split("\n"))


def render_retrieval_logic() -> str:
    """Python retrieval logic for the exported script, one branch per rule."""
    lines = []
    for i, rule in enumerate(RETRIEVAL_RULES):
        keyword = "if" if i == 0 else "elif"
        lines.append(f"{keyword} any(x in sitrep for x in {json.dumps(list(rule.keywords))}):")
        lines.append(f'    key, score = "{rule.protocol.value}", {rule.confidence}')
    lines.append("else:")
    lines.append(f'    key, score = "{DEFAULT_PROTOCOL.value}", {DEFAULT_CONFIDENCE}')
    return "\n".join(lines)


def render_dispatch_cases() -> str:
    cases = []
    for branch in DISPATCH_BRANCHES:
        cases.append(f"{branch.severity.value}:\n{_indent(DISPATCH_ACTIONS[branch.action_id], 2)}")
    return "\n".join(cases)


def generate_workflow_yaml(
    incident: Incident,
    catalog: Optional[ProtocolCatalog] = None,
    provider: Optional[LLMProvider] = None,
    model: Optional[str] = None,
) -> str:
    """Generate the workflow definition for an incident.

    Args:
        incident: Incident whose telemetry and location become the input defaults
        catalog: Protocol catalog embedded for the retrieval task
        provider: LLM provider for the chat tasks (from settings if not specified)
        model: Model name for the chat tasks (from settings if not specified)

    Returns:
        YAML text of the five-task workflow
    """
    settings = get_settings()
    catalog = catalog if catalog is not None else get_catalog()
    provider = provider or settings.llm_provider
    model = model or settings.model_for(provider)
    chat = CHAT_TASK_STYLES[provider]

    protocols_json = json.dumps(catalog.as_dict())

    return WORKFLOW_TEMPLATE.substitute(
        workflow_id=WORKFLOW_ID,
        namespace=WORKFLOW_NAMESPACE,
        description=yaml_quote(f"Event-Driven RAG Response System ({incident.id})"),
        raw_telemetry=yaml_quote(incident.raw_telemetry),
        location=yaml_quote(incident.location),
        ingest_task=INGEST.task_id,
        summarize_task=SUMMARIZE.task_id,
        retrieve_task=RETRIEVE.task_id,
        decide_task=DECIDE.task_id,
        dispatch_task=DISPATCH.task_id,
        chat_type=chat.type,
        chat_secret=chat.secret,
        model=yaml_quote(model),
        summary_output=chat.output.format(task=SUMMARIZE.task_id),
        decision_output=chat.output.format(task=DECIDE.task_id),
        protocols_literal=json.dumps(protocols_json),
        retrieval_logic=_indent(render_retrieval_logic(), 6),
        dispatch_cases=_indent(render_dispatch_cases(), 6),
        dispatch_default=_indent(DISPATCH_ACTIONS[DEFAULT_BRANCH.action_id], 6),
    )
