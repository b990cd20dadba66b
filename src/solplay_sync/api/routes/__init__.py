"""Route modules, one router factory per concern."""
