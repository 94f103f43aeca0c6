"""
pantry_core: Pantry Tracker client core
===================================
Architecture: one event loop, blocking HTTP on short-lived worker threads.

  constants.py   → Version, poll intervals, freshness window, storage keys
  config.py      → Paths, logging, config load/save, settings
  errors.py      → NetworkError, ApiError, ValidationError, Job* errors
  jobs.py        → JobKind, JobState, JobHandle, JobStatus
  http_client.py → Pooled requests session + ApiClient
  api.py         → Server API calls and per-kind status checks
  scheduler.py   → Clocks, EventLoop (after/after_cancel), runners
  poller.py      → Poller state machine (arm / cancel / settle)
  storage.py     → MemoryStore, JsonFileStore
  cache.py       → LocalCache, freshness, read_through
  session.py     → Credential + profile lifecycle
  views.py       → Screen state machine: signup, login, dashboard
  bulk_buy.py    → Bulk-buy savings calculator
  app.py         → PantryApp (wires loop, client, store, cache, session)
  runner.py      → `pantry` typer CLI (dashboard, login, logout, list, bulk)
"""
