# lidmap API Utilities
"""
Shared utility functions for lidmap API services.
"""

from api.utils.datetime_utils import make_aware, parse_message_timestamp

__all__ = ["make_aware", "parse_message_timestamp"]
