"""Conversation/tool-execution engine: loop controller, orchestrator, validator, compression."""
