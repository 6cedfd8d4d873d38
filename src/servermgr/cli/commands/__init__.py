"""servermgr commands (one module per command)."""
