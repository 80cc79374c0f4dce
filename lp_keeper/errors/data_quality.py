"""
Data quality error classifications for curve math and position monitoring.

These exceptions describe bad or missing inputs. They are local to the
position being evaluated and never abort a keeper cycle.
"""

from typing import Any, Dict, Optional


class DataQualityError(Exception):
    """Base class for data quality issues that can be handled gracefully."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}
        self.recoverable = True


class InvalidInputError(DataQualityError, ValueError):
    """Numeric argument rejected by the curve engine. Never clamped."""

    def __init__(self, message: str, parameter: Optional[str] = None,
                 value: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.parameter = parameter
        self.value = value


class DataUnavailableError(DataQualityError):
    """Price or bin data missing; the engine cannot decide."""

    def __init__(self, message: str, data_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.data_type = data_type


class MalformedDataError(DataQualityError):
    """Stored data exists but cannot be decoded into a domain type."""

    def __init__(self, message: str, raw_data: Optional[str] = None,
                 expected_format: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.raw_data = raw_data
        self.expected_format = expected_format
