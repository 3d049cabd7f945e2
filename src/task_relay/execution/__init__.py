"""Serial dispatch of pending tasks to CLI coding agents."""
