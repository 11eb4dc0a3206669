"""Attribution, reconstruction and windowed-aggregation engine.

Components, leaves first:

- :mod:`~channel_pulse.pipeline.fetcher`: flood-control-aware feed calls
- :mod:`~channel_pulse.pipeline.attribution`: comment → channel post
- :mod:`~channel_pulse.pipeline.tree`: flat replies → nested forest
- :mod:`~channel_pulse.pipeline.scanner`: windowed pagination
- :mod:`~channel_pulse.pipeline.aggregator`: ranked engagement report
- :mod:`~channel_pulse.pipeline.run_store`: run record storage
- :mod:`~channel_pulse.pipeline.lifecycle`: throttled run orchestration
- :mod:`~channel_pulse.pipeline.export`: comment-tree export
"""
