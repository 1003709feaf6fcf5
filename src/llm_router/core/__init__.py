"""Core types, enums and exceptions."""
