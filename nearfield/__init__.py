"""Near-field narrative engine.

Scene playback, bounded NPC interaction, story/scene orchestration and
clue tracking over an instance-isolated repository. ``build_engine`` in
``nearfield.engine`` wires the parts together.
"""
