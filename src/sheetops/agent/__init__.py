"""Hosted-agent integration: response parsing, transport, chat session."""
