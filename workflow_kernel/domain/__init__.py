"""Pure domain layer: value objects, completion rules, clock."""
