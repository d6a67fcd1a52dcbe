"""Translate a user's automation configuration into a workflow definition.

Everything in this module is pure: no I/O and no clock reads, so the same
template, user and configuration always produce the same definition.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Sequence

from pydantic import BaseModel, Field

from .constants import CATEGORIZE_NODE, DEFAULT_CATEGORY, NOTIFY_NODE
from .contracts import AutomationConfig, BusinessCategory, WorkflowDefinition

logger = logging.getLogger(__name__)

KEYWORD_MAP: Dict[str, List[str]] = {
    "new leads": ["quote", "price", "cost", "interested", "inquiry", "information"],
    "customer support": ["help", "support", "problem", "issue", "trouble", "question"],
    "service requests": ["service", "repair", "maintenance", "fix", "broken", "appointment"],
    "invoices & billing": ["invoice", "payment", "bill", "charge", "receipt", "refund"],
    "partnerships": ["partner", "vendor", "supplier", "collaboration", "business"],
    "appointments": ["appointment", "schedule", "booking", "meeting", "visit"],
    "product inquiries": ["product", "hot tub", "spa", "model", "features", "specifications"],
    "warranty claims": ["warranty", "claim", "defect", "replacement", "coverage"],
}

MAX_CATEGORY_NAME_LENGTH = 50
MAX_TEAM_MEMBERS = 10
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_WHITESPACE_RE = re.compile(r"\s+")

_DEFAULT_CATEGORIZATION_CODE = """// Email categorization logic
const email = items[0].json;
const subject = (email.subject || '').toLowerCase();
const body = (email.body || '').toLowerCase();

let category = 'general';

if (subject.includes('quote') || subject.includes('price')) {
  category = 'new-leads';
} else if (subject.includes('support') || subject.includes('help')) {
  category = 'customer-support';
} else if (subject.includes('service') || subject.includes('repair')) {
  category = 'service-requests';
} else if (subject.includes('invoice') || subject.includes('payment')) {
  category = 'invoices-billing';
}

return [{ json: { ...email, category, processed_at: new Date().toISOString() } }];"""

MASTER_TEMPLATE: Dict[str, Any] = {
    "name": "Floworx Email Automation Template",
    "nodes": [
        {
            "name": "Gmail Trigger",
            "type": "n8n-nodes-base.gmailTrigger",
            "typeVersion": 1,
            "position": [250, 300],
            "parameters": {},
            "webhookId": "gmail-webhook",
            "credentials": {"gmailOAuth2": "gmail_oauth"},
        },
        {
            "name": CATEGORIZE_NODE,
            "type": "n8n-nodes-base.function",
            "typeVersion": 1,
            "position": [450, 300],
            "parameters": {"functionCode": _DEFAULT_CATEGORIZATION_CODE},
        },
        {
            "name": "Is New Lead?",
            "type": "n8n-nodes-base.if",
            "typeVersion": 1,
            "position": [650, 300],
            "parameters": {
                "conditions": {
                    "string": [
                        {
                            "value1": "={{$json.category}}",
                            "operation": "equal",
                            "value2": "new-leads",
                        }
                    ]
                }
            },
        },
        {
            "name": "Label as New Lead",
            "type": "n8n-nodes-base.gmail",
            "typeVersion": 1,
            "position": [850, 200],
            "parameters": {
                "labelIds": ["INBOX", "Label_New_Leads"],
                "messageId": "={{$json.id}}",
            },
            "credentials": {"gmailOAuth2": "gmail_oauth"},
        },
        {
            "name": NOTIFY_NODE,
            "type": "n8n-nodes-base.emailSend",
            "typeVersion": 1,
            "position": [1050, 200],
            "parameters": {
                "to": "team@company.com",
                "subject": "New Lead: {{$json.subject}}",
                "message": (
                    "A new lead email has been received:\n\n"
                    "From: {{$json.from}}\nSubject: {{$json.subject}}\n\n"
                    "Please review and respond promptly."
                ),
            },
        },
    ],
    "connections": {
        "Gmail Trigger": {"main": [[{"node": CATEGORIZE_NODE, "type": "main", "index": 0}]]},
        CATEGORIZE_NODE: {"main": [[{"node": "Is New Lead?", "type": "main", "index": 0}]]},
        "Is New Lead?": {"main": [[{"node": "Label as New Lead", "type": "main", "index": 0}]]},
        "Label as New Lead": {"main": [[{"node": NOTIFY_NODE, "type": "main", "index": 0}]]},
    },
    "active": False,
    "settings": {},
    "staticData": {},
}


def master_template() -> WorkflowDefinition:
    """Return a fresh copy of the master email automation template."""
    return WorkflowDefinition.model_validate(MASTER_TEMPLATE)


def _normalize_name(name: str) -> str:
    return _WHITESPACE_RE.sub(" ", name.strip().lower())


def category_slug(name: str) -> str:
    """Identifier a category is tagged with inside the workflow."""
    return _WHITESPACE_RE.sub("-", name.strip().lower())


def generate_keywords(category_name: str) -> List[str]:
    """Derive the keywords matching mail for ``category_name``.

    Known categories use the dictionary; anything else falls back to the name
    with whitespace removed plus its first word.
    """
    key = _normalize_name(category_name)
    if key in KEYWORD_MAP:
        return list(KEYWORD_MAP[key])
    candidates = [key.replace(" ", ""), key.split(" ")[0]]
    keywords: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in keywords:
            keywords.append(candidate)
    return keywords


def generate_categorization_code(categories: Sequence[BusinessCategory]) -> str:
    """Build the categorizer node's function code.

    Categories become an if/else-if chain in input order, so the first
    matching category wins.
    """
    rules = []
    for category in categories:
        checks = " || ".join(
            f"subject.includes({json.dumps(k)}) || body.includes({json.dumps(k)})"
            for k in generate_keywords(category.name)
        )
        rules.append(
            f"if ({checks}) {{\n  category = {json.dumps(category_slug(category.name))};\n}}"
        )
    chain = " else ".join(rules)
    return (
        "// Email categorization generated from business categories\n"
        "const email = items[0].json;\n"
        "const subject = (email.subject || '').toLowerCase();\n"
        "const body = (email.body || '').toLowerCase();\n"
        "\n"
        f"let category = {json.dumps(DEFAULT_CATEGORY)};\n"
        "\n"
        f"{chain}\n"
        "\n"
        "return [{ json: { ...email, category, processed_at: new Date().toISOString() } }];"
    )


def notification_recipients(config: AutomationConfig) -> List[str]:
    """Unique emails of team members that opted into notifications, in order."""
    recipients: List[str] = []
    for member in config.team_members:
        email = member.email.strip()
        if member.notify and email and email not in recipients:
            recipients.append(email)
    return recipients


def workflow_name(user_id: str) -> str:
    return f"Floworx Automation - User {user_id}"


def customize(
    template: WorkflowDefinition, user_id: str, config: AutomationConfig
) -> WorkflowDefinition:
    """Produce the concrete workflow for ``user_id`` from ``template``."""
    customized = template.model_copy(deep=True)
    customized.name = workflow_name(user_id)

    if config.business_categories:
        node = customized.node(CATEGORIZE_NODE)
        if node is not None:
            node.parameters["functionCode"] = generate_categorization_code(
                config.business_categories
            )

    # TODO: route each category to its mapped label once the label node is
    # generated per category; mappings are accepted but not applied yet.
    if config.label_mappings:
        logger.debug(
            f"Ignoring {len(config.label_mappings)} label mappings for user {user_id}"
        )

    if config.team_members:
        recipients = notification_recipients(config)
        node = customized.node(NOTIFY_NODE)
        if node is not None and recipients:
            node.parameters["to"] = ", ".join(recipients)

    return customized


class ConfigReport(BaseModel):
    """Outcome of checking an automation configuration before deployment."""

    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    score: int = 0


def config_score(config: AutomationConfig) -> int:
    """Rate how complete a configuration is, from 0 to 100."""
    score = 0
    categories = len(config.business_categories)
    if categories:
        score += 40
        if categories >= 3:
            score += 10
        if categories >= 5:
            score += 10
    if config.label_mappings:
        score += 20
    members = len(config.team_members)
    if members:
        score += 20
        if members >= 2:
            score += 5
        if members >= 3:
            score += 5
    return min(score, 100)


def validate_config(config: AutomationConfig) -> ConfigReport:
    errors: List[str] = []
    warnings: List[str] = []

    if not config.business_categories:
        errors.append("At least one business category is required")
    for index, category in enumerate(config.business_categories, start=1):
        name = category.name.strip()
        if not name:
            errors.append(f"Category {index} must have a name")
        elif len(name) > MAX_CATEGORY_NAME_LENGTH:
            warnings.append(
                f'Category "{name}" is quite long - consider shortening for better readability'
            )

    if len(config.team_members) > MAX_TEAM_MEMBERS:
        warnings.append("Large number of team members may result in many notifications")
    for index, member in enumerate(config.team_members, start=1):
        if member.email and not _EMAIL_RE.match(member.email):
            errors.append(
                f"Team member {index} has invalid email address: {member.email}"
            )

    return ConfigReport(
        valid=not errors, errors=errors, warnings=warnings, score=config_score(config)
    )
