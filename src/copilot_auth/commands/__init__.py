"""CLI command implementations registered on :data:`copilot_auth.app.app`."""
