# modules/notify/__init__.py
"""Notification delivery orchestration.

Turns domain events into per-recipient, per-channel deliveries and drives
them to a terminal state through pluggable channel adapters.

Features:
- Rule matching with condition expressions and recipient resolution
- Hierarchical preferences, suppression lists and quiet hours
- Windowed deduplication and digest batching
- Retries with exponential backoff and a replayable dead letter queue
- A per-message explain trace of every decision
"""
