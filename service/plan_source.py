"""Template-based plan source for short videos."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

from domain.short_plan import (
    EMPTY_TOPIC_CODE,
    Plan,
    PlanValidationError,
    Segment,
    ShortStyle,
)


@dataclass(frozen=True)
class BeatTemplate:
    """Format strings for one beat; ``{topic}`` is substituted."""

    label: str
    caption: str
    narration: str
    visual_cue: str
    duration: float


@dataclass(frozen=True)
class StyleTemplate:
    """Headline copy and beat map for one style."""

    title: str
    hook: str
    summary: str
    cta: str
    beats: Tuple[BeatTemplate, ...]


STYLE_TEMPLATES: dict[ShortStyle, StyleTemplate] = {
    ShortStyle.EDUCATIONAL: StyleTemplate(
        title="{topic}: the 30 second breakdown",
        hook="Most people get {topic} wrong. Here is the framework that works.",
        summary="A three step framework for {topic} with one action to take today.",
        cta="Follow for the next breakdown.",
        beats=(
            BeatTemplate(
                "Hook",
                "Stop guessing at {topic}",
                "You are one framework away from doing {topic} properly.",
                "Close-up, bold kinetic title",
                3.0,
            ),
            BeatTemplate(
                "Step 1",
                "Start with the outcome",
                "Write down what success with {topic} looks like in one sentence.",
                "Notebook scribble overlay",
                4.5,
            ),
            BeatTemplate(
                "Step 2",
                "Find the smallest lever",
                "Pick the single action that moves {topic} the most this week.",
                "Arrow pointing at one highlighted item",
                4.5,
            ),
            BeatTemplate(
                "Step 3",
                "Measure, then repeat",
                "Track one number for {topic} and review it every Friday.",
                "Simple line chart trending up",
                4.5,
            ),
            BeatTemplate(
                "Payoff",
                "Save this and try it today",
                "Run the framework once and you will never approach {topic} the same way.",
                "Checklist with all boxes ticked",
                3.5,
            ),
        ),
    ),
    ShortStyle.STORY: StyleTemplate(
        title="The day {topic} changed everything",
        hook="Nobody expected {topic} to end like this.",
        summary="A short story arc about {topic} with a twist at the end.",
        cta="Comment if you saw the twist coming.",
        beats=(
            BeatTemplate(
                "Setup",
                "It started like any other day",
                "Nobody was thinking about {topic}. That was the first mistake.",
                "Slow push-in on a quiet street",
                3.5,
            ),
            BeatTemplate(
                "Conflict",
                "Then everything broke",
                "One small decision about {topic} spiralled out of control.",
                "Quick cuts, red tint",
                4.0,
            ),
            BeatTemplate(
                "Struggle",
                "Every fix made it worse",
                "Each attempt to save {topic} uncovered a bigger problem.",
                "Split screen of failed attempts",
                4.5,
            ),
            BeatTemplate(
                "Twist",
                "The problem was never {topic}",
                "The real issue had been hiding in plain sight the whole time.",
                "Freeze frame with circle highlight",
                4.0,
            ),
            BeatTemplate(
                "Resolution",
                "Now it is the first thing they check",
                "And that is how {topic} became the lesson nobody forgets.",
                "Sunrise wide shot",
                3.5,
            ),
        ),
    ),
    ShortStyle.PRODUCT: StyleTemplate(
        title="Meet {topic}",
        hook="{topic} does in seconds what used to take hours.",
        summary="A product highlight for {topic} with proof and a reason to act now.",
        cta="Tap the link to try {topic} today.",
        beats=(
            BeatTemplate(
                "Problem",
                "Still doing it the slow way?",
                "Every week you lose hours that {topic} could give back.",
                "Clock spinning fast",
                3.0,
            ),
            BeatTemplate(
                "Reveal",
                "Introducing {topic}",
                "{topic} handles the busywork so you can focus on what matters.",
                "Product hero shot on gradient",
                4.0,
            ),
            BeatTemplate(
                "Proof",
                "Loved by early users",
                "Teams using {topic} ship faster and report fewer headaches.",
                "Testimonial cards sliding in",
                4.5,
            ),
            BeatTemplate(
                "Offer",
                "Launch pricing ends soon",
                "Early adopters lock in the best price on {topic}.",
                "Countdown badge",
                3.5,
            ),
        ),
    ),
    ShortStyle.MOTIVATIONAL: StyleTemplate(
        title="Your {topic} moment is now",
        hook="You do not need permission to start {topic}.",
        summary="A pep talk about {topic} ending in a seven day challenge.",
        cta="Start the seven day challenge and tag a friend.",
        beats=(
            BeatTemplate(
                "Spark",
                "You already know what to do",
                "The only thing between you and {topic} is the first step.",
                "Silhouette against sunrise",
                3.5,
            ),
            BeatTemplate(
                "Truth",
                "Nobody feels ready",
                "Everyone you admire started {topic} before they felt ready.",
                "Montage of first attempts",
                4.0,
            ),
            BeatTemplate(
                "Mantra",
                "Small steps, every day",
                "Ten minutes of {topic} a day beats one perfect plan.",
                "Calendar filling with checkmarks",
                4.0,
            ),
            BeatTemplate(
                "Challenge",
                "Seven days starting today",
                "Commit to {topic} for one week and see who you become.",
                "Bold 7 over a running track",
                4.0,
            ),
        ),
    ),
}


def generate_short_plan(topic: str, style: ShortStyle) -> Plan:
    """Build a deterministic plan for the topic in the requested style."""
    normalized_topic = " ".join(topic.split())
    if not normalized_topic:
        raise PlanValidationError(EMPTY_TOPIC_CODE, "topic must be non-empty")
    template = STYLE_TEMPLATES[style]
    segments = tuple(
        Segment(
            id=f"{style.value}-{index + 1}",
            label=beat.label,
            caption=beat.caption.format(topic=normalized_topic),
            narration=beat.narration.format(topic=normalized_topic),
            visual_cue=beat.visual_cue,
            duration=beat.duration,
        )
        for index, beat in enumerate(template.beats)
    )
    return Plan(
        title=template.title.format(topic=normalized_topic),
        hook=template.hook.format(topic=normalized_topic),
        summary=template.summary.format(topic=normalized_topic),
        cta=template.cta.format(topic=normalized_topic),
        segments=segments,
    )
