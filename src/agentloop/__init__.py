"""agentloop — tool-using LLM agent loop with sessions, delegation and a realtime gateway."""

__version__ = "0.1.0"
