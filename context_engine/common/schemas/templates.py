"""
Context Export Templates

Renders a user's context items to Markdown for export and review.
"""

from typing import TYPE_CHECKING, Dict, List, Sequence

if TYPE_CHECKING:
    from .context_items import Decision, Goal, Issue, Preference, Todo


EXPORT_HEADER = """# User Context: {owner_id}
Exported: {exported_at}
Decisions: {n_decisions} | Goals: {n_goals} | Preferences: {n_preferences} | Issues: {n_issues} | Todos: {n_todos}
"""

SECTION_TITLES = {
    "decisions": "Decisions",
    "goals": "Goals",
    "preferences": "Preferences",
    "issues": "Known Issues",
    "todos": "Todos",
}


def _enum_text(value) -> str:
    return value.value if hasattr(value, "value") else str(value)


def _format_list(values: Sequence[str], empty: str = "(none)") -> str:
    if not values:
        return empty
    return ", ".join(values)


def render_decision(decision: "Decision") -> str:
    lines = [
        f"### {decision.text}",
        f"- ID: {decision.id}",
        f"- Category: {_enum_text(decision.category)} | Status: {_enum_text(decision.status)}",
        f"- Confidence: {decision.confidence_score:.2f} | Applied: {decision.applied_count}",
        f"- Scope: {decision.scope.to_string()}",
    ]
    if decision.reason:
        lines.append(f"- Reason: {decision.reason}")
    if decision.last_applied:
        lines.append(f"- Last applied: {decision.last_applied.isoformat()}")
    return "\n".join(lines)


def render_goal(goal: "Goal") -> str:
    lines = [
        f"### {goal.text}",
        f"- ID: {goal.id}",
        f"- Status: {_enum_text(goal.status)} | Priority: {goal.priority} "
        f"| Progress: {goal.completion_percentage:.0f}%",
        f"- Scope: {goal.scope.to_string()}",
    ]
    if goal.description:
        lines.append(f"- Description: {goal.description}")
    if goal.target_date:
        lines.append(f"- Target: {goal.target_date.date().isoformat()}")
    if goal.blockers:
        lines.append(f"- Blockers: {_format_list(goal.blockers)}")
    for step in goal.ordered_steps():
        marker = "x" if step.is_completed else " "
        lines.append(f"  - [{marker}] {step.step_number}. {step.description}")
    return "\n".join(lines)


def render_preference(preference: "Preference") -> str:
    automation = "yes" if preference.applies_to_automation else "no"
    lines = [
        f"### {preference.name}: {preference.value}",
        f"- ID: {preference.id}",
        f"- Type: {_enum_text(preference.preference_type)} | Priority: {preference.priority} "
        f"| Automation: {automation}",
        f"- Observed: {preference.frequency_observed} time(s)",
        f"- Tags: {_format_list(preference.tags)}",
    ]
    if preference.rationale:
        lines.append(f"- Rationale: {preference.rationale}")
    return "\n".join(lines)


def render_issue(issue: "Issue") -> str:
    lines = [
        f"### {issue.description}",
        f"- ID: {issue.id}",
        f"- Severity: {_enum_text(issue.severity)} | Category: {_enum_text(issue.category)} "
        f"| Resolution: {_enum_text(issue.resolution_status)}",
        f"- Components: {_format_list(issue.affected_components)}",
    ]
    if issue.symptoms:
        lines.append("- Symptoms:")
        lines.extend(f"  - {s}" for s in issue.symptoms)
    if issue.root_cause:
        lines.append(f"- Root cause: {issue.root_cause}")
    if issue.workaround:
        lines.append(f"- Workaround: {issue.workaround}")
    if issue.permanent_solution:
        lines.append(f"- Permanent solution: {issue.permanent_solution}")
    return "\n".join(lines)


def render_todo(todo: "Todo") -> str:
    lines = [
        f"### {todo.description}",
        f"- ID: {todo.id}",
        f"- Status: {_enum_text(todo.status)} | Priority: {todo.priority} "
        f"| Context: {_enum_text(todo.context_type)}",
    ]
    if todo.related_entity_id:
        related_type = _enum_text(todo.related_entity_type) if todo.related_entity_type else "item"
        lines.append(f"- Related {related_type}: {todo.related_entity_id}")
    if todo.due_date:
        lines.append(f"- Due: {todo.due_date.date().isoformat()}")
    return "\n".join(lines)


_RENDERERS = {
    "decisions": render_decision,
    "goals": render_goal,
    "preferences": render_preference,
    "issues": render_issue,
    "todos": render_todo,
}


def render_context_markdown(owner_id: str, exported_at: str, sections: Dict[str, List]) -> str:
    """
    Render exported context as a single Markdown document.

    Args:
        owner_id: Owner whose context is exported
        exported_at: ISO timestamp of the export
        sections: Mapping of section key (decisions, goals, ...) to items.
            Only keys present in the mapping are rendered.
    """
    text = EXPORT_HEADER.format(
        owner_id=owner_id,
        exported_at=exported_at,
        n_decisions=len(sections.get("decisions", [])),
        n_goals=len(sections.get("goals", [])),
        n_preferences=len(sections.get("preferences", [])),
        n_issues=len(sections.get("issues", [])),
        n_todos=len(sections.get("todos", [])),
    )

    parts = [text.strip()]
    for key, title in SECTION_TITLES.items():
        if key not in sections:
            continue
        items = sections[key]
        parts.append(f"## {title}")
        if not items:
            parts.append("(none)")
            continue
        parts.extend(_RENDERERS[key](item) for item in items)

    return "\n\n".join(parts).strip() + "\n"
