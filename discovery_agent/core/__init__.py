"""Domain types, enums and scoring rules."""
