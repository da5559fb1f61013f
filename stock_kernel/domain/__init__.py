"""Pure domain layer: clock and value objects."""
