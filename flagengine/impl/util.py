import logging

log = logging.getLogger('flagengine')


class FlagConfigurationError(ValueError):
    """Raised when flag definitions cannot be loaded.

    This is the only error the package raises for data problems, and only while a catalog is
    being built. Evaluation never raises it.
    """

    def __init__(self, message: str, flag_name=None):
        if flag_name is not None:
            message = 'flag "%s": %s' % (flag_name, message)
        super(FlagConfigurationError, self).__init__(message)
        self._flag_name = flag_name

    @property
    def flag_name(self):
        return self._flag_name
