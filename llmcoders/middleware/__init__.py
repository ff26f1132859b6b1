"""
Default middleware for llmcoders.

Call install_defaults() at startup to register all built-in hooks.
"""

from llmcoders.middleware import logging_hook, metrics_hook


def install_defaults(log_path=None, run_context=None):
    """Register all default middleware hooks. Returns installed components.

    Args:
        log_path: Path for JSONL logging (logging is a no-op while unset).
        run_context: Dict with session, coder, root etc. for log enrichment.

    Returns:
        Dict with references to installed components (e.g. metrics collector).
    """
    logging_hook.install(log_path=log_path, run_context=run_context or {})
    collector = metrics_hook.install()

    return {
        "metrics": collector,
    }
