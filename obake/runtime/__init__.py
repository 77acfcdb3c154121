"""Code that runs inside a runtime image.

Modules
-------
entrypoint
    ``EntrypointDispatcher`` and the ``obake-entrypoint`` console script:
    the one binary of an image, arguments forwarded verbatim.
bindings
    Launch-time checks of declared device bindings; a missing one degrades
    a feature with a ``DegradedModeWarning`` instead of failing the launch.
"""
