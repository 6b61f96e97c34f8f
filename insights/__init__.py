"""
insights core package.

Modules
───────
models        — Pydantic data models (Query, Insight, InsightSet, ChartSeries, Preferences)
state         — RequestState snapshots (Idle, Loading, Success, Failure)
errors        — canonical error taxonomy shared by providers and orchestrator
providers     — ProviderAdapter contract + Anthropic / Ollama adapters
transformer   — raw payload → InsightSet, InsightSet → ChartSeries
cache         — TTL + LRU ResponseCache
orchestrator  — RequestOrchestrator: cache, retries, latest-request-wins
storage       — synchronous key-value backends (SQLite, JSON file, memory)
preferences   — PreferenceStore (load/save with default fallback)
runtime       — Settings-driven wiring and the background event-loop runner
"""
