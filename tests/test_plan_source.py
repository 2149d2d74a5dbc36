"""Unit tests for the template plan source."""

from __future__ import annotations

import pytest

from domain.short_plan import EMPTY_TOPIC_CODE, PlanValidationError, ShortStyle
from service.plan_source import STYLE_TEMPLATES, generate_short_plan


@pytest.mark.parametrize("style", list(ShortStyle))
def test_every_style_has_a_template(style: ShortStyle) -> None:
    plan = generate_short_plan("home espresso", style)

    assert len(plan.segments) == len(STYLE_TEMPLATES[style].beats)
    assert all(segment.id.startswith(f"{style.value}-") for segment in plan.segments)
    assert all(segment.duration > 0 for segment in plan.segments)


def test_generate_short_plan_is_deterministic() -> None:
    first = generate_short_plan("home espresso", ShortStyle.EDUCATIONAL)
    second = generate_short_plan("home espresso", ShortStyle.EDUCATIONAL)

    assert first == second


def test_generate_short_plan_normalizes_topic_whitespace() -> None:
    plan = generate_short_plan("  home \n espresso ", ShortStyle.STORY)

    assert "home espresso" in plan.title
    assert "  " not in plan.title


def test_generate_short_plan_rejects_blank_topic() -> None:
    with pytest.raises(PlanValidationError) as error:
        generate_short_plan("   ", ShortStyle.PRODUCT)
    assert error.value.code == EMPTY_TOPIC_CODE
