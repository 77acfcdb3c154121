"""siren — control plane of the live-coding shell.

Modules
-------
options
    ``SirenOptions`` and ``parse_options``: the closed CLI schema.
bootstrap
    ``Bootstrap`` — parse options, configure logging, start the remote
    listener, run the command handler; the ``siren`` console script.
listener
    ``RemoteListener`` — line-based TCP endpoint on port 4005.
session
    ``ControlPlaneSession`` — commands served over the listener.
backend
    ``BackendConnection`` — UDP/OSC link to the synthesis server.
osc
    Minimal OSC message encoding and decoding.
"""
