"""Built-in recommendation rules over notes, tasks and calendar events."""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, List

from .models import Evidence, Record, default_dedup_key
from .rules import CandidateTemplate, Rule, RuleContext, RuleSet

NOTEBOOK = "notebook"
PLANNER = "planner"
CALENDAR = "calendar"

DECLINE_COOLDOWN = timedelta(hours=24)
DEADLINE_WARNING = timedelta(days=3)
STALE_TASK_AGE = timedelta(days=3)
REFLECTION_INTERVAL = timedelta(days=6)
MIN_UPCOMING_DEADLINES = 3
MIN_HIGH_PRIORITY_TASKS = 2
MIN_UNTAGGED_NOTES = 5

_CLOSED_TASK_STATUSES = {"completed", "cancelled"}
_TASK_PRIORITY_ORDER = {"urgent": 4, "high": 3, "medium": 2, "low": 1}
_FOCUS_MARKERS = ("focus", "deep work")


def _open_tasks(ctx: RuleContext) -> List[Record]:
    return [task for task in ctx.snapshot.module(PLANNER) if task.attr("status", "pending") not in _CLOSED_TASK_STATUSES]


def _is_reflection_note(note: Record) -> bool:
    title = note.title.lower()
    return "reflection" in title or "weekly" in title or any("reflection" in tag.lower() for tag in note.tags)


def _cooled_down(ctx: RuleContext, rule_id: str, template: CandidateTemplate, module_tag: str) -> bool:
    key = template.dedup_key or default_dedup_key(module_tag, rule_id, template.subject_id)
    return not ctx.recently_declined(rule_id, key, DECLINE_COOLDOWN)


def due_date_review_rule(ctx: RuleContext) -> Iterable[CandidateTemplate]:
    horizon = ctx.now + DEADLINE_WARNING
    upcoming = [
        task
        for task in ctx.snapshot.module(PLANNER)
        if task.due_at is not None and task.attr("status") != "completed" and ctx.now < task.due_at <= horizon
    ]
    if len(upcoming) < MIN_UPCOMING_DEADLINES:
        return []
    upcoming.sort(key=lambda task: (task.due_at, task.id))
    day = ctx.now.date().isoformat()
    template = CandidateTemplate(
        subject_id=day,
        title="Review upcoming deadlines",
        body=(
            f"{len(upcoming)} tasks due within 3 days. Review priorities and adjust "
            "your schedule to avoid a last-minute rush."
        ),
        evidence=[
            Evidence.from_record(task, excerpt=f"{task.title} due {task.due_at:%Y-%m-%d %H:%M}")
            for task in upcoming
        ],
        dedup_key=f"{PLANNER}:due_date_review:{day}",
    )
    if not _cooled_down(ctx, "due_date_review", template, PLANNER):
        return []
    return [template]


def focus_time_rule(ctx: RuleContext) -> Iterable[CandidateTemplate]:
    important = [task for task in _open_tasks(ctx) if task.attr("priority") in {"high", "urgent"}]
    if len(important) < MIN_HIGH_PRIORITY_TASKS:
        return []
    horizon = ctx.now + DEADLINE_WARNING
    for event in ctx.snapshot.module(CALENDAR):
        if event.due_at is None or not ctx.now < event.due_at < horizon:
            continue
        if any(marker in event.title.lower() for marker in _FOCUS_MARKERS):
            return []
    day = ctx.now.date().isoformat()
    template = CandidateTemplate(
        subject_id=day,
        title="Schedule focus time",
        body=f"Block a 2-hour deep work session for {len(important)} high-priority tasks.",
        evidence=[Evidence.from_record(task, excerpt=f"{task.title} ({task.attr('priority')})") for task in important],
        dedup_key=f"{CALENDAR}:focus_time:{day}",
    )
    if not _cooled_down(ctx, "focus_time", template, CALENDAR):
        return []
    return [template]


def meeting_notes_rule(ctx: RuleContext) -> Iterable[CandidateTemplate]:
    window_start = ctx.now - timedelta(hours=24)
    note_titles = [note.title.lower() for note in ctx.snapshot.module(NOTEBOOK)]
    templates: List[CandidateTemplate] = []
    for event in ctx.snapshot.module(CALENDAR):
        if event.due_at is None or not window_start < event.due_at < ctx.now or not event.title:
            continue
        if any(event.title.lower() in title for title in note_titles):
            continue
        template = CandidateTemplate(
            subject_id=event.id,
            title=f"Document: {event.title}",
            body=(
                f'Create structured notes for "{event.title}" that occurred recently. '
                "Capture key decisions and action items while they are fresh."
            ),
            evidence=[
                Evidence(
                    source_record_id=event.id,
                    source_module=event.module,
                    observed_at=event.due_at,
                    excerpt=f"{event.title} started {event.due_at:%Y-%m-%d %H:%M}",
                )
            ],
        )
        if _cooled_down(ctx, "meeting_notes", template, NOTEBOOK):
            templates.append(template)
    return templates


def task_breakdown_rule(ctx: RuleContext) -> Iterable[CandidateTemplate]:
    cutoff = ctx.now - STALE_TASK_AGE
    stale = [
        task
        for task in ctx.snapshot.module(PLANNER)
        if task.attr("status", "pending") == "pending" and task.created_at < cutoff and not task.attr("parent_id")
    ]
    stale.sort(key=lambda task: (-_TASK_PRIORITY_ORDER.get(task.attr("priority"), 0), task.created_at, task.id))
    # One breakdown per pass: the most important stale task not under cooldown.
    for task in stale:
        days_pending = (ctx.now - task.created_at).days
        template = CandidateTemplate(
            subject_id=task.id,
            title=f"Break down: {task.title}",
            body=(
                f'Task "{task.title}" has been pending for {days_pending} days. '
                "Splitting it into 3-5 subtasks makes it more actionable."
            ),
            evidence=[Evidence.from_record(task, excerpt=f"{task.title} created {task.created_at:%Y-%m-%d}")],
        )
        if _cooled_down(ctx, "task_breakdown", template, PLANNER):
            return [template]
    return []


def weekly_reflection_rule(ctx: RuleContext) -> Iterable[CandidateTemplate]:
    # Friday through Sunday only.
    if ctx.now.weekday() < 4:
        return []
    notes = ctx.snapshot.module(NOTEBOOK)
    if not notes:
        return []
    cutoff = ctx.now - REFLECTION_INTERVAL
    reflections = [note for note in notes if _is_reflection_note(note)]
    if any(note.updated_at > cutoff for note in reflections):
        return []
    if reflections:
        latest = max(reflections, key=lambda note: note.updated_at)
        excerpt = f"Last reflection: {latest.title} ({latest.updated_at:%Y-%m-%d})"
    else:
        latest = max(notes, key=lambda note: note.updated_at)
        excerpt = "No reflection notes yet"
    day = ctx.now.date().isoformat()
    template = CandidateTemplate(
        subject_id=day,
        title="Weekly reflection",
        body="Take 10 minutes to reflect on this week's wins, challenges and lessons learned.",
        evidence=[Evidence.from_record(latest, excerpt=excerpt)],
        dedup_key=f"{NOTEBOOK}:weekly_reflection:{day}",
    )
    if not _cooled_down(ctx, "weekly_reflection", template, NOTEBOOK):
        return []
    return [template]


def note_tagging_rule(ctx: RuleContext) -> Iterable[CandidateTemplate]:
    untagged = [note for note in ctx.snapshot.module(NOTEBOOK) if not note.tags]
    if len(untagged) < MIN_UNTAGGED_NOTES:
        return []
    untagged.sort(key=lambda note: (note.created_at, note.id))
    template = CandidateTemplate(
        subject_id="batch",
        title="Add tags to notes",
        body=f"{len(untagged)} notes lack tags. Tagged notes are much easier to find later.",
        evidence=[Evidence.from_record(note) for note in untagged[:5]],
    )
    if not _cooled_down(ctx, "note_tagging", template, NOTEBOOK):
        return []
    return [template]


def build_default_ruleset() -> RuleSet:
    return RuleSet(
        [
            Rule("due_date_review", PLANNER, 90, due_date_review_rule, ttl=timedelta(hours=12)),
            Rule("focus_time", CALENDAR, 80, focus_time_rule, ttl=timedelta(hours=36)),
            Rule("meeting_notes", NOTEBOOK, 75, meeting_notes_rule, ttl=timedelta(hours=24)),
            Rule("task_breakdown", PLANNER, 70, task_breakdown_rule, ttl=timedelta(hours=48)),
            Rule("weekly_reflection", NOTEBOOK, 40, weekly_reflection_rule, ttl=timedelta(hours=48)),
            Rule(
                "note_tagging",
                NOTEBOOK,
                30,
                note_tagging_rule,
                ttl=timedelta(hours=72),
                counts_against_limit=False,
            ),
        ]
    )
