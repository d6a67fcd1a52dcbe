"""Tests for template customization."""

from mailpilot.constants import CATEGORIZE_NODE, NOTIFY_NODE
from mailpilot.contracts import AutomationConfig
from mailpilot.customize import (
    KEYWORD_MAP,
    customize,
    generate_categorization_code,
    generate_keywords,
    master_template,
    notification_recipients,
    validate_config,
)


def _config(**overrides) -> AutomationConfig:
    data = {
        "businessCategories": [
            {"name": "New Leads", "description": "Quote requests"},
            {"name": "Customer Support"},
        ],
        "teamMembers": [
            {"name": "A", "email": "a@x.com", "notify": True},
            {"name": "B", "email": "b@x.com", "notify": True},
        ],
    }
    data.update(overrides)
    return AutomationConfig.model_validate(data)


def test_customize_is_idempotent():
    template = master_template()
    config = _config()

    first = customize(template, "user-1", config)
    second = customize(template, "user-1", config)

    assert first.to_json() == second.to_json()


def test_customize_does_not_mutate_template():
    template = master_template()
    before = template.to_json()

    customize(template, "user-1", _config())

    assert template.to_json() == before


def test_customize_embeds_user_and_replaces_recipients():
    definition = customize(master_template(), "user-7", _config())

    assert definition.name == "Floworx Automation - User user-7"
    assert definition.node(NOTIFY_NODE).parameters["to"] == "a@x.com, b@x.com"
    code = definition.node(CATEGORIZE_NODE).parameters["functionCode"]
    assert '"new-leads"' in code
    assert '"customer-support"' in code


def test_customize_without_categories_keeps_default_logic():
    template = master_template()
    definition = customize(template, "user-1", AutomationConfig())

    assert (
        definition.node(CATEGORIZE_NODE).parameters
        == template.node(CATEGORIZE_NODE).parameters
    )
    assert definition.node(NOTIFY_NODE).parameters["to"] == "team@company.com"


def test_keywords_for_dictionary_category_ignore_case_and_spacing():
    assert generate_keywords("  NEW   Leads ") == KEYWORD_MAP["new leads"]


def test_keywords_for_punctuated_category_are_stable():
    first = generate_keywords("Support - Technical")
    second = generate_keywords("Support - Technical")

    assert first
    assert first == second
    assert "support" in first


def test_keywords_fallback_deduplicates_single_word():
    assert generate_keywords("Pools") == ["pools"]


def test_categorization_chain_keeps_input_order():
    config = _config(businessCategories=["Customer Support", "New Leads"])
    code = generate_categorization_code(config.business_categories)

    assert code.index('"customer-support"') < code.index('"new-leads"')
    assert "} else if (" in code
    assert 'let category = "general";' in code


def test_recipients_skip_opted_out_and_duplicates():
    config = _config(
        teamMembers=[
            {"name": "A", "email": "a@x.com"},
            {"name": "B", "email": "b@x.com", "notify": False},
            {"name": "A2", "email": "a@x.com"},
        ]
    )

    assert notification_recipients(config) == ["a@x.com"]


def test_label_mappings_are_accepted_but_not_applied():
    plain = customize(master_template(), "user-1", _config())
    mapped = customize(
        master_template(),
        "user-1",
        _config(
            labelMappings=[
                {"categoryName": "New Leads", "externalLabelId": "Label_42"}
            ]
        ),
    )

    assert plain.to_json() == mapped.to_json()


def test_validate_config_rejects_empty_categories():
    report = validate_config(AutomationConfig())

    assert not report.valid
    assert "At least one business category is required" in report.errors


def test_validate_config_flags_invalid_email_and_long_names():
    config = _config(
        businessCategories=["x" * 60],
        teamMembers=[{"name": "A", "email": "not-an-email"}],
    )
    report = validate_config(config)

    assert not report.valid
    assert any("invalid email" in e for e in report.errors)
    assert any("quite long" in w for w in report.warnings)


def test_validate_config_scores_complete_config():
    config = _config(
        businessCategories=["a", "b", "c", "d", "e"],
        labelMappings=[{"categoryName": "a", "externalLabelId": "L1"}],
        teamMembers=[
            {"name": "A", "email": "a@x.com"},
            {"name": "B", "email": "b@x.com"},
            {"name": "C", "email": "c@x.com"},
        ],
    )
    report = validate_config(config)

    assert report.valid
    assert report.score == 100
