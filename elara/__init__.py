# flake8: noqa
"""
Elara: a herbal-remedy chat front-end.

Modules:
    settings:     Configuration loading and persistence helpers.
    schemas:      Pydantic models for plants, recipes, messages and request bodies.
    session:      Auth session context and the persistent login store.
    backend:      HTTP client for the recommendation/recipe backend.
    mocks:        Static fallback tables for when the backend is unavailable.
    llm:          Chat-completions client and tool registry.
    tools:        Tool adapters the language model can call.
    orchestrator: Bounded tool-calling loop that produces stream events.
    templates:    HTML for the single chat page.
    main:         FastAPI application wiring everything together.
"""
