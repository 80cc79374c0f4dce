"""
Utility functions module.

Shared time handling and timeout helpers. All timestamps inside the keeper
are timezone-aware UTC datetimes; they are converted to ISO-8601 strings only
at the persistence boundary.
"""
