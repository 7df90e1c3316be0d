import logging

# Silent until an entrypoint calls txflow.logging_setup.configure_logging
logging.getLogger(__name__).addHandler(logging.NullHandler())


# Import main lazily to avoid circular dependencies
def __getattr__(name):
    if name == "main":
        from txflow.cli.main import main
        return main
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
