"""Telegram (Telethon) binding: feed source, client construction and
report target validation."""
