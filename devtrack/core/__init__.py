"""Coordination core: shared state, intents, broadcast and build single-flight."""
