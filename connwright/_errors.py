import ssl


class InvalidArgumentError(ValueError):
    '''
    Raised when a registry or configuration option has an unusable shape.

    Parent: ValueError
    '''


class TLSConfigurationError(ValueError):
    '''
    Raised when keystore, trust store or key/trust manager material
    cannot be loaded into a TLS context.

    Parent: ValueError
    '''


class UnsupportedManagerTypeError(TypeError):
    '''
    Raised when `shutdown` is handed an object it does not know how
    to tear down.

    Parent: TypeError
    '''


class IOReactorStartupError(RuntimeError):
    '''
    Raised on dispatch when the reactor's event loop failed to launch
    or is no longer running.

    Parent: RuntimeError
    '''


class HostnameMismatchError(ssl.CertificateError):
    '''
    Raised when the peer certificate does not match the requested hostname.

    Parent: ssl.CertificateError
    '''
