"""Event-driven pull request review pipeline.

This package turns GitHub App webhooks into emailed review reports:
- Webhook signature verification and event classification
- Installation token brokering with a two-tier cache
- Declarative routing of domain events to pipeline stages
- Diff retrieval, model analysis, PDF rendering and mail delivery
"""
