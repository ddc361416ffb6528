"""Media generation service.

Submits generation jobs to third-party providers, reconciles their status
(falling back to the provider's output bucket when the status API is
unreliable) and completes each job exactly once.
"""
