from .errors import describe_error, format_exception, show_error_dialog

__all__ = ["describe_error", "format_exception", "show_error_dialog"]
