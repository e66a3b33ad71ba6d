"""Security primitives: token cache, local passwords, session challenges."""
