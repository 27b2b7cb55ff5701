"""Personal assistant agent: provider adapters, reasoning loop, sessions, tools."""
