"""Business logic: provider clients, model selection, execution, pipeline, recovery."""
