"""Handlebars prompt rendering for generated dialogue."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars

from nearfield.models import NarrativeUnit, NpcInstance, SceneTemplate

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


DEFAULT_DIALOGUE_TEMPLATE = """\
You are writing one turn of an interactive story scene.

Scene: {{{scene.title}}}{{#if scene.location}} ({{{scene.location}}}){{/if}}
{{#if scene.background_info}}Background: {{{scene.background_info}}}
{{/if}}{{#if goal}}Goal of this exchange: {{{goal}}}
{{/if}}
Characters present:
{{#each npcs}}- {{{this.npc_id}}}: {{{this.name}}}. Traits: {{{this.traits}}}. Style: {{{this.speaking_style}}}. Mood: {{{this.mood}}}.
{{/each}}
Recent exchange:
{{#last history 8}}[{{{this.actor}}}] {{{this.content}}}
{{/last}}
Turn {{turn_number}} of {{max_turns}}.{{#if final_turn}} This is the final turn: resolve the situation.{{/if}}
The player says or does: {{{intent_text}}}

Reply with a JSON object:
{"lines": [{"actor": "<npc id>", "content": "<spoken words or action>"}],
 "entity_updates": [{"entity_id": "<npc id>", "composure": <0-100>, "status": "<mood>"}],
 "is_scene_over": <true|false>}
"""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_take(this, options, items, count):
    """{{#take array N}}...{{/take}}: iterate over the first N items."""
    result = []
    for item in list(items)[:int(count)]:
        result.extend(options["fn"](item))
    return result


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}}: iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "take": _helper_take,
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_dialogue_context(
    scene: SceneTemplate,
    npcs: list[NpcInstance],
    history: list[NarrativeUnit],
    intent_text: str,
    turn_number: int,
    max_turns: int,
    goal: str = "",
) -> dict[str, Any]:
    """Assemble template variables for one interaction turn."""
    return {
        "scene": {
            "title": scene.title,
            "location": scene.location,
            "background_info": scene.background_info,
            "objective": scene.objective,
        },
        "npcs": [
            {
                "npc_id": npc.npc_template_id,
                "name": npc.npc_data.name,
                "traits": ", ".join(npc.npc_data.personality.traits),
                "speaking_style": npc.npc_data.personality.speaking_style,
                "mood": npc.current_state.current_mood,
            }
            for npc in npcs
        ],
        "history": [{"actor": u.actor, "content": u.content} for u in history],
        "intent_text": intent_text,
        "turn_number": turn_number,
        "max_turns": max_turns,
        "final_turn": turn_number >= max_turns,
        "goal": goal,
    }
