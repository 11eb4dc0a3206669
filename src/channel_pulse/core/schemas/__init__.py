"""Domain types shared across the pipeline.

Sub-modules:
    messages: Message, AuthorPeer variants, Reactions
    report: EngagementRecord, EngagementReport, CommentNode
    runs: RunStatus, RunRecord
"""

from __future__ import annotations
