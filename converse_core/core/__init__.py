"""Runtime plumbing: debounced persistence and logging setup."""
