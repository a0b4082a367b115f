# src/tasknudge/core/persona.py

"""
Persona registry.

A persona is a named voice: prompt headers + traits for the model, example
lines, and canned notification templates used when no model is reachable.
Built-in and user-defined personas share one type, so callers resolve a persona
once and never branch on its id afterwards.

Templates are plain str.format strings; the only placeholders are {title} and {n}.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Final

from .models import EventKind, GreetingKind, TaskSnapshot

Template = tuple[str, str]  # (notification title, body)

RECURRENCE_HINT: Final[str] = (
    "Note: this is a recurring task (a habit or routine). Phrase it as today's "
    'round of something familiar ("the usual", "today\'s one").'
)

# Lexical event phrasing. Control flow never depends on the event kind.
EVENT_STATUS: Final[Mapping[EventKind, str]] = {
    EventKind.REMINDER: "is coming up soon",
    EventKind.OVERDUE: "is past its due time",
    EventKind.FOLLOW_UP: "is still not done",
}

REMINDER_LABEL: Final[Mapping[bool, str]] = {False: "Reminder", True: "Habit reminder"}

WARNING_STATUS: Final[Mapping[EventKind, str]] = {
    EventKind.REMINDER: "is due soon.",
    EventKind.OVERDUE: "is past due!",
    EventKind.FOLLOW_UP: "is still open.",
}

GREETING_ASK: Final[Mapping[GreetingKind, str]] = {
    GreetingKind.MORNING: "Say good morning.",
    GreetingKind.NOON: "Say a short midday hello and encourage the afternoon.",
    GreetingKind.EVENING: "Say a short good evening and thank them for today's effort.",
}

PERSONA_HINT: Final[str] = "Switching the persona off sends plain notifications without any AI call."


@dataclass(frozen=True, slots=True)
class NotificationTemplates:
    reminder: Template
    overdue: Template
    follow_ups: tuple[Template, ...]
    recurring_reminder: Template | None = None
    recurring_overdue: Template | None = None
    recurring_follow_ups: tuple[Template, ...] = ()

    def pick(self, kind: EventKind, follow_up_count: int, recurring: bool) -> Template:
        if kind == EventKind.OVERDUE:
            return (recurring and self.recurring_overdue) or self.overdue
        if kind == EventKind.FOLLOW_UP:
            seq = (recurring and self.recurring_follow_ups) or self.follow_ups
            # Escalate by index, clamped to the last (most insistent) entry.
            return seq[min(max(follow_up_count, 0), len(seq) - 1)]
        return (recurring and self.recurring_reminder) or self.reminder


PLAIN_TEMPLATES: Final[NotificationTemplates] = NotificationTemplates(
    reminder=("Reminder", '"{title}" is due now'),
    overdue=("⚠️ Overdue", '"{title}" is past its due date'),
    follow_ups=(
        ("Reminder", '"{title}" is not done yet'),
        ("Reminder (2nd)", 'Did you forget "{title}"?'),
        ("Reminder (3rd)", 'Please take care of "{title}"'),
        ("Important reminder", '"{title}" - reminder #{n}'),
    ),
)


@dataclass(frozen=True, slots=True)
class Persona:
    id: str
    name: str
    description: str = ""
    header_reminder: str = ""
    header_greeting: str = ""
    base_traits: tuple[str, ...] = ()
    reminder_traits: tuple[str, ...] = ()
    greeting_traits: tuple[str, ...] = ()
    reminder_examples: tuple[str, ...] = ()
    recurring_examples: tuple[str, ...] = ()
    greeting_examples: Mapping[GreetingKind, tuple[str, ...]] = field(default_factory=dict)
    templates: NotificationTemplates = PLAIN_TEMPLATES
    user_reminder_template: str = ""
    user_greeting_template: str = ""
    custom: bool = False

    # ---- prompts ----

    def system_prompt(self, *, greeting: bool = False, recurring: bool = False, memory_context: str = "") -> str:
        """Header, traits, optional situation block and examples."""
        if self.custom:
            sections = [self.header_reminder if not greeting else (self.header_greeting or self.header_reminder)]
            if memory_context.strip():
                sections.append(f"## Current situation\n{memory_context.strip()}")
            return "\n\n".join(sections)

        header = self.header_greeting if greeting else self.header_reminder
        traits = self.greeting_traits if greeting else self.reminder_traits
        if greeting:
            examples: Iterable[str] = [e for group in self.greeting_examples.values() for e in group]
        else:
            examples = self.recurring_examples if recurring and self.recurring_examples else self.reminder_examples

        sections = [
            header,
            "## Character",
            "\n".join(f"- {t}" for t in (*self.base_traits, *traits)),
        ]
        if recurring and not greeting:
            sections.append(RECURRENCE_HINT)
        if memory_context.strip():
            sections.append(f"## Current situation\n{memory_context.strip()}")
        sections.append("## Examples")
        sections.append("\n".join(f"- {e}" for e in examples))
        return "\n\n".join(s for s in sections if s)

    def reminder_prompt(self, task: TaskSnapshot, kind: EventKind, now: float, *, memory_hint: bool) -> str:
        context = describe_due(task, kind, now)
        if self.user_reminder_template:
            extra = (
                self.user_reminder_template.replace("{taskTitle}", task.title)
                .replace("{title}", task.title)
                .replace("{status}", EVENT_STATUS[kind])
            )
            prompt = f"{context}\nAdditional instructions: {extra}"
        else:
            prompt = (
                f"{context}\n\nWrite a gentle reminder that nudges without pressure and shows "
                "you believe they can do it. Keep it short (2-3 sentences)."
            )
        if task.is_recurring:
            prompt += f"\n{RECURRENCE_HINT}"
        if memory_hint:
            prompt += "\nTake the current situation into account."
        return prompt

    def greeting_prompt(self, kind: GreetingKind, *, memory_hint: bool) -> str:
        prompt = GREETING_ASK[kind]
        if self.user_greeting_template:
            prompt += f"\nAdditional instructions: {self.user_greeting_template}"
        if memory_hint:
            prompt += " Take the current situation into account."
        return prompt

    # ---- canned text ----

    def notification(
        self, kind: EventKind, title: str, follow_up_count: int = 0, recurring: bool = False
    ) -> Template:
        head, body = self.templates.pick(kind, follow_up_count, recurring)
        return head.format(title=title, n=follow_up_count), body.format(title=title, n=follow_up_count)

    def canned_reminder(self, task: TaskSnapshot, kind: EventKind, rng: random.Random, follow_up_count: int = 0) -> str:
        pool = self.recurring_examples if task.is_recurring and self.recurring_examples else self.reminder_examples
        # Example lines are written for upcoming tasks; overdue and follow-up use the escalating templates.
        if not pool or kind != EventKind.REMINDER:
            return self.notification(kind, task.title, follow_up_count, task.is_recurring)[1]
        return rng.choice(pool).format(title=task.title)

    def canned_greeting(self, kind: GreetingKind, rng: random.Random) -> str:
        pool = self.greeting_examples.get(kind) or DEFAULT_GREETINGS[kind]
        return rng.choice(pool)


def describe_due(task: TaskSnapshot, kind: EventKind, now: float) -> str:
    if kind == EventKind.OVERDUE:
        return f'[OVERDUE] The task "{task.title}" is past its due time.'
    if kind == EventKind.FOLLOW_UP:
        return f'The task "{task.title}" is still not done after an earlier reminder.'
    if task.due_at is not None:
        delta = task.due_at - now
        days = int(delta // 86400)
        hours = int(delta // 3600)
        if days > 0:
            return f'The task "{task.title}" is due in {days} day(s).'
        if hours > 0:
            return f'The task "{task.title}" is due in {hours} hour(s).'
        return f'The task "{task.title}" is due very soon!'
    return f'Reminder for the task "{task.title}".'


DEFAULT_GREETINGS: Final[Mapping[GreetingKind, tuple[str, ...]]] = {
    GreetingKind.MORNING: ("Good morning. Take it easy today and go at your own pace.",),
    GreetingKind.NOON: ("It's noon. Keep it up this afternoon.",),
    GreetingKind.EVENING: ("Good work today. You did well.",),
}


KANAE = Persona(
    id="kanae",
    name="Kanae",
    description="Cool kouhai with a soft spot for you. Acts superior, stays polite.",
    header_reminder=(
        'You are "Kanae Sato", the user\'s fiancee and junior. Remind them gently, '
        "like a push on the back. No pressure; show that you believe in them."
    ),
    header_greeting='You are "Kanae Sato", the user\'s fiancee and junior. Greet them.',
    base_traits=(
        "Keeps emotions low-key but clearly likes her senpai",
        "Acts a bit superior yet always stays polite",
        'Naturally uses "senpai", "well, I suppose", "fine, I\'ll do it for you"',
        "Never uses ellipses",
        "Occasionally lets affection slip, then covers it up",
    ),
    reminder_traits=(
        "Encourages gently, like a push on the back",
        "Short and simple (2-3 sentences)",
    ),
    greeting_traits=("A little more honest in the morning", "Short (1-2 sentences)"),
    reminder_examples=(
        "Senpai, it's time for {title}. I know you can do it.",
        "{title} is coming up. No need to rush, one step at a time.",
        "I came to remind you about {title}. Don't overdo it, but I believe in you.",
        "The deadline for {title} is close, senpai. It's fine, I'm right here.",
    ),
    recurring_examples=(
        "Senpai, the usual: {title}. Let's get today's round done.",
        "{title} again today. Keeping it up is what counts, you know.",
    ),
    greeting_examples={
        GreetingKind.MORNING: (
            "Good morning, senpai. Don't push yourself today. I'm right here.",
            "Morning, senpai. Let's take it slow and do it your way today.",
        ),
        GreetingKind.NOON: ("It's lunchtime, senpai. Eat properly before the afternoon, okay?",),
        GreetingKind.EVENING: ("Good work today, senpai. Well, you did alright, I suppose.",),
    },
    templates=NotificationTemplates(
        reminder=("Well, I suppose", 'It\'s time for "{title}", senpai'),
        overdue=("⚠️ Overdue!", '"{title}" is past due! Do it right now!'),
        follow_ups=(
            ("Do it now!", '"{title}" still isn\'t done?'),
            ("Still not done?", '"{title}", hurry up!'),
            ("Hey!", 'Did you forget "{title}"? Right now!'),
            ("Hurry!!", '"{title}" - that\'s reminder #{n}!'),
            ("Come on!", 'How many times do I have to say "{title}"?'),
            ("Final warning!", 'Do "{title}" now or else!'),
        ),
        recurring_reminder=("The usual", 'Time for "{title}", senpai. Let\'s do today\'s round'),
        recurring_overdue=("⚠️ Habit slipping!", '"{title}" - you haven\'t done today\'s round, senpai!'),
        recurring_follow_ups=(
            ("The usual", '"{title}" not yet?'),
            ("Forgot your routine?", '"{title}" - let\'s do it today too'),
            ("Habits matter!", '"{title}" - consistency is strength!'),
        ),
    ),
)

SECRETARY = Persona(
    id="secretary",
    name="Gentle secretary",
    description="Polite, calm and professional.",
    header_reminder=(
        "You are a kind secretary. Remind gently without pressure and show a supportive attitude."
    ),
    header_greeting="You are a kind secretary. Give a greeting.",
    base_traits=("Polite, calm tone", "Professional but warm", "Shows consideration for the other person"),
    reminder_traits=("Gentle, supportive reminder", "Short (2-3 sentences)"),
    greeting_traits=("Fresh and positive greeting", "Mindful of today's schedule"),
    reminder_examples=(
        "The time for {title} is approaching. Please proceed at your own pace.",
        "It is nearly time for {title}. Let me know if there is anything I can help with.",
    ),
    greeting_examples={
        GreetingKind.MORNING: ("Good morning. Let us take today at a comfortable pace.",),
        GreetingKind.NOON: ("It is noon. I wish you a productive afternoon.",),
        GreetingKind.EVENING: ("Thank you for your hard work today. Please rest well.",),
    },
    templates=NotificationTemplates(
        reminder=("Notice", 'It is time for "{title}".'),
        overdue=("⚠️ Past due", '"{title}" is past its deadline. Please attend to it.'),
        follow_ups=(
            ("Reminder", 'Please attend to "{title}".'),
            ("Second notice", '"{title}" has not been completed yet.'),
            ("Important", '"{title}" - prompt attention would be appreciated.'),
        ),
        recurring_reminder=("Routine task", '"{title}", as usual, please.'),
        recurring_overdue=("Routine task notice", 'Today\'s "{title}" has not been done yet.'),
    ),
)

ENERGETIC_KOUHAI = Persona(
    id="energetic-kouhai",
    name="Energetic kouhai",
    description="High-energy, cheerful junior.",
    header_reminder=(
        "You are an energetic junior. Remind cheerfully without pressure and cheer them on."
    ),
    header_greeting="You are an energetic junior. Greet them with lots of energy.",
    base_traits=("High energy", 'Uses "!" a lot', "Positive and encouraging"),
    reminder_traits=("Bright, cheering reminder", "Short and upbeat (2-3 sentences)"),
    greeting_traits=("Full of energy from the morning",),
    reminder_examples=(
        "Senpai! It's time for {title}! You've got this!",
        "Let's do {title} together! Your own pace is fine!",
    ),
    greeting_examples={
        GreetingKind.MORNING: ("Good morning, senpai! Let's have a great day!",),
        GreetingKind.NOON: ("Senpai! Lunchtime! Let's crush the afternoon together!",),
        GreetingKind.EVENING: ("Great work today, senpai! Let's do our best tomorrow too!",),
    },
    templates=NotificationTemplates(
        reminder=("Senpai! It's time!", 'Time for "{title}"! Fight!'),
        overdue=("⚠️ Senpai, trouble!", '"{title}" is past due!'),
        follow_ups=(
            ("Senpai!", '"{title}" not yet? You can do it!'),
            ("Huh? Senpai?", 'Did you forget "{title}"?'),
            ("Senpaaai!!", 'Let\'s do "{title}"! Together!'),
        ),
        recurring_reminder=("The usual!", 'Let\'s knock out "{title}" today too!'),
        recurring_overdue=("Senpai! Routine!", 'Today\'s "{title}" isn\'t done yet!'),
    ),
)

BUTLER = Persona(
    id="butler",
    name="Cool butler",
    description="Composed butler. Concise and precise.",
    header_reminder=(
        "You are a composed butler. Remind calmly without pressure and convey quiet trust."
    ),
    header_greeting="You are a composed butler. Give a greeting.",
    base_traits=("Calm, never shows emotion", 'Addresses the user as "sir"', "Concise and precise"),
    reminder_traits=("Calm reminder with trust", "Concise but warm (1-2 sentences)"),
    greeting_traits=("Brief greeting", "Mentions the day plainly"),
    reminder_examples=(
        "Sir, it is time for {title}. Please proceed at your pace.",
        "The hour for {title} has arrived. I have every confidence in you, sir.",
    ),
    greeting_examples={
        GreetingKind.MORNING: ("Good morning, sir. Please do not overexert yourself today.",),
        GreetingKind.NOON: ("Sir, it is noon. Please take care this afternoon.",),
        GreetingKind.EVENING: ("Thank you for your efforts today, sir. Have a pleasant evening.",),
    },
    templates=NotificationTemplates(
        reminder=("Sir", 'It is time for "{title}".'),
        overdue=("Sir", '"{title}" is past its deadline. Your attention, please.'),
        follow_ups=(
            ("Sir", 'How shall we proceed with "{title}"?'),
            ("A further report", '"{title}" remains outstanding.'),
            ("If I may", 'I would be grateful if "{title}" were attended to promptly.'),
        ),
        recurring_reminder=("Routine", '"{title}", as usual, sir.'),
        recurring_overdue=("Sir", 'Today\'s "{title}" has not yet been done.'),
    ),
)

BUILTIN_PERSONAS: Final[tuple[Persona, ...]] = (KANAE, SECRETARY, ENERGETIC_KOUHAI, BUTLER)
DEFAULT_PERSONA_ID: Final[str] = KANAE.id


def custom_persona(
    persona_id: str,
    name: str,
    system_prompt: str,
    *,
    reminder_template: str = "",
    greeting_template: str = "",
) -> Persona:
    """User-defined persona: free-form system prompt, plain notification templates."""
    return Persona(
        id=persona_id,
        name=name,
        header_reminder=system_prompt,
        header_greeting=system_prompt,
        user_reminder_template=reminder_template,
        user_greeting_template=greeting_template,
        custom=True,
    )


class PersonaRegistry:
    """personaId -> Persona. Unknown ids resolve to the default built-in persona."""

    def __init__(self, personas: Iterable[Persona] = BUILTIN_PERSONAS) -> None:
        self._personas: dict[str, Persona] = {}
        for p in personas:
            self.register(p)

    def register(self, persona: Persona) -> None:
        self._personas[persona.id] = persona

    def get(self, persona_id: str) -> Persona | None:
        return self._personas.get(persona_id)

    def resolve(self, persona_id: str | None) -> Persona:
        if persona_id and persona_id in self._personas:
            return self._personas[persona_id]
        return self._personas.get(DEFAULT_PERSONA_ID) or KANAE

    def ids(self) -> list[str]:
        return list(self._personas)
