"""Prometheus metrics for channel-pulse.

All metrics are module-level singletons registered on the default
``REGISTRY``.  The host process decides whether and how to expose them
(e.g. ``prometheus_client.start_http_server``).

Metrics defined here:

  report_runs_total{status}
      Counter: report runs reaching a terminal state (success, failed) plus
      rejected starts (limited, already_running).

  feed_fetch_retries_total{reason}
      Counter: retried feed calls, labelled by why the call was retried
      (flood_wait when the error carried an explicit wait, backoff otherwise).

  discussion_messages_scanned_total
      Counter: discussion-group messages examined by the windowed scanner.

  attribution_results_total{outcome}
      Counter: comment attributions by outcome (hit, miss).

Usage::

    from channel_pulse.core.metrics import report_runs_total
    report_runs_total.labels(status="success").inc()
"""

from __future__ import annotations

from prometheus_client import Counter

report_runs_total: Counter = Counter(
    "report_runs_total",
    "Report run outcomes by status.",
    labelnames=["status"],
)
"""Counter incremented once per ``RunLifecycleManager.start`` outcome.

Labels:
  status: one of success, failed, limited, already_running
"""

feed_fetch_retries_total: Counter = Counter(
    "feed_fetch_retries_total",
    "Retried feed calls by reason.",
    labelnames=["reason"],
)
"""Counter incremented before each retry sleep in the rate-limited fetcher.

Labels:
  reason: flood_wait or backoff
"""

discussion_messages_scanned_total: Counter = Counter(
    "discussion_messages_scanned_total",
    "Discussion-group messages examined by the windowed scanner.",
)

attribution_results_total: Counter = Counter(
    "attribution_results_total",
    "Comment-to-post attributions by outcome.",
    labelnames=["outcome"],
)
"""Counter incremented per aggregated message that reached attribution.

Labels:
  outcome: hit or miss
"""
