"""Decorators injecting values of leased secrets into function calls """
import functools


class InjectSecretValue:
    """Decorator injecting the current value of one secret property"""

    def __init__(self, source, key):
        """
        Constructs a decorator to inject a single non-keyworded argument from a live property source.

        :type source: secret_lease_manager.LeaseAwareSecretPropertySource
        :param source: The property source following the secret

        :type key: str
        :param key: The flattened property name, e.g. "password" or "hosts[0]"
        """

        self.source = source
        self.key = key

    def __call__(self, func):
        """
        Return a function with the current secret value injected as first argument.

        The value is looked up on every call so rotations are picked up.

        :type func: object
        :param func: The function for injecting a single non-keyworded argument too.
        :return The function with the injected argument.
        """

        @functools.wraps(func)
        def _wrapped_func(*args, **kwargs):
            """
            Internal function to execute wrapped function
            """
            try:
                secret = self.source[self.key]
            except KeyError:
                raise RuntimeError(f"Secret {self.source.name} does not contain key {self.key}") from None
            return func(secret, *args, **kwargs)

        return _wrapped_func


class InjectKeywordedSecretValues:
    """Decorator injecting keyword arguments from secret properties"""

    def __init__(self, source, **kwargs):
        """
        Construct a decorator to inject a variable list of keyword arguments to a given function with resolved values
        from a live property source.

        :type source: secret_lease_manager.LeaseAwareSecretPropertySource
        :param source: The property source following the secret

        :type kwargs: dict
        :param kwargs: dictionary mapping original keyword argument of wrapped function to secret property name
        """

        self.source = source
        self.kwarg_map = kwargs

    def __call__(self, func):
        """
        Return a function with injected keyword arguments from the current secret.

        :type func: object
        :param func: function for injecting keyword arguments.
        :return The original function with injected keyword arguments
        """

        @functools.wraps(func)
        def _wrapped_func(*args, **kwargs):
            """
            Internal function to execute wrapped function
            """
            # one snapshot so all arguments come from the same version of the secret
            secret = self.source.snapshot()
            resolved_kwargs = dict()
            for orig_kwarg, secret_key in self.kwarg_map.items():
                try:
                    resolved_kwargs[orig_kwarg] = secret[secret_key]
                except KeyError:
                    raise RuntimeError(f"Secret {self.source.name} does not contain key {secret_key}") from None
            return func(*args, **resolved_kwargs, **kwargs)

        return _wrapped_func
