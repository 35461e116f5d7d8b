"""Remote-side business rules. Each write commits, then publishes its change events."""
