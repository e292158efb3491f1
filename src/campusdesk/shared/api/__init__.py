"""HTTP-layer helpers shared across bounded contexts."""
