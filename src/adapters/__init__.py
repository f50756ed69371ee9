"""Adapters package for scorekeeper.

Adapters bind the core ports to SQLite and Telegram (Telethon).
"""
