"""Tool-calling summarizer: budget, tool gateway, prompts and orchestrator."""
