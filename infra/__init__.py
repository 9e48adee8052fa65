"""
Infrastructure layer

┌─────────────────────────────────────────────────────────────┐
│                        infra/                               │
├─────────────────────────────────────────────────────────────┤
│  storage/     │ bounded output queue (OutputEmitter)        │
│               │ follow cursor persistence (CursorStore)     │
├─────────────────────────────────────────────────────────────┤
│  resilience/  │ retry budgets / circuit breaker / timeouts  │
└─────────────────────────────────────────────────────────────┘
"""
