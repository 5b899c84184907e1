"""Column store backends, one subpackage per tier (memory, sqlite, redis)."""
