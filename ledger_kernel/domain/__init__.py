"""Pure domain layer: clock, DTOs and balance arithmetic. No database access."""
