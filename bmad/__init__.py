"""bmad-cli: AI-driven PR triage and user-story authoring."""

__version__ = "0.4.0"
