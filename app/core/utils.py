import logging
from typing import Any, Dict, Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Attach a stream handler to the application logger namespace once."""
    app_logger = logging.getLogger("app")
    app_logger.setLevel(level.upper())
    if not app_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        app_logger.addHandler(handler)


class LoggerMixin:
    """
    Mixin to add structured logging to classes.

    Messages may be strings or dicts; dicts are rendered as-is so that
    every event carries an ``event_type`` key plus its identifiers.

    Example:
        class PaymentService(LoggerMixin):
            async def settle(self, payment):
                self.log_info({"event_type": "payment_settled", "payment_id": str(payment.id)})
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._logger: Optional[logging.Logger] = None

    @property
    def logger(self) -> logging.Logger:
        if self._logger is None:
            self._logger = logging.getLogger(f"app.{self.__class__.__name__}")
        return self._logger

    def _format_message(self, message: Union[str, Dict[str, Any]]) -> str:
        if isinstance(message, dict):
            return str(message)
        return message

    def log_info(self, message: Union[str, Dict[str, Any]], **kwargs) -> None:
        self.logger.info(self._format_message(message), **kwargs)

    def log_warning(self, message: Union[str, Dict[str, Any]], **kwargs) -> None:
        self.logger.warning(self._format_message(message), **kwargs)

    def log_error(
        self, message: Union[str, Dict[str, Any]], exc_info: bool = False, **kwargs
    ) -> None:
        """
        Log an error level message.

        Args:
            message: Message to log (string or dict)
            exc_info: Attach the active exception's traceback if True
        """
        self.logger.error(self._format_message(message), exc_info=exc_info, **kwargs)

    def log_debug(self, message: Union[str, Dict[str, Any]], **kwargs) -> None:
        self.logger.debug(self._format_message(message), **kwargs)

    def log_security_event(self, message: Union[str, Dict[str, Any]], **kwargs) -> None:
        """Log at warning level with a 'SECURITY EVENT:' prefix for filtering."""
        formatted_msg = self._format_message(message)
        self.logger.warning(f"SECURITY EVENT: {formatted_msg}", **kwargs)


class _ModuleLevelLogger(LoggerMixin):
    """Module-level logger instance that uses a fixed name."""

    def __init__(self):
        self._logger = logging.getLogger("app.logger")


logger = _ModuleLevelLogger()
