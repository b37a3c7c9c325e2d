"""Pipeline stages run for a single task attempt."""
