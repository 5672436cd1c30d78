"""Spreadsheet backends: integration broker and local workbook."""
