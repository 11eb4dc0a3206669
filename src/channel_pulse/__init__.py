"""channel-pulse: discussion-group engagement reports for broadcast channels.

The package ingests the reverse-chronological message feed of the discussion
group linked to a Telegram channel and turns it into:

- a ranked engagement report of which authors commented on which channel
  posts within a time window (:mod:`channel_pulse.pipeline.aggregator`), and
- a nested comment tree per post for export
  (:mod:`channel_pulse.pipeline.export`).

Runs are throttled per actor and scope by
:class:`~channel_pulse.pipeline.lifecycle.RunLifecycleManager`.
"""

__version__ = "0.1.0"
