"""sheetops: operation-based editing and sync for Google Sheets."""

__version__ = "0.1.0"
