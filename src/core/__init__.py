"""Core domain package for scorekeeper.

Core contains parsing, name resolution, slot lookup, reconciliation and the
poll loop without any Telegram or storage-specific code, keeping the
business logic portable.
"""
