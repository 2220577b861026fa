"""Core module - configuration, observability and storage primitives.

Shared by the line-item engine, the API and the Temporal worker. Nothing in
here knows about job_parts; line-item semantics live in /line_items/.
"""

__version__ = "1.0.0"
