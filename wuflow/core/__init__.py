"""Core subsystems: event-sourced state, git transactions, completion pipeline."""
