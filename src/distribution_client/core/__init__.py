"""Registry protocol core: configuration, auth and request handling."""
