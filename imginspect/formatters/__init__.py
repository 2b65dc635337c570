"""Output formatters module."""

from imginspect.formatters.base import BaseFormatter
from imginspect.formatters.json_fmt import JsonFormatter
from imginspect.formatters.table import TableFormatter, render_scan_result

__all__ = ["BaseFormatter", "TableFormatter", "JsonFormatter", "render_scan_result"]
