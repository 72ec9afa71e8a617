"""Clients for the external capabilities: source control, hosting, AI, payments."""
