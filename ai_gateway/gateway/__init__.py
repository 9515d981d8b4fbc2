"""AI Generation Gateway.

Provides async, vendor-neutral text generation for product services with:
  - Backend Adapters (OpenAI, Gemini, Anthropic call conventions)
  - Adapter Registry (model id -> configured adapter)
  - Model Selection Policy (admin override over built-in defaults)
  - Quota Enforcer (daily / monthly limits per plan tier)
  - Fallback Orchestrator (primary, then backup once)
  - Usage Ledger (append-only audit log, source of quota counts)
"""
